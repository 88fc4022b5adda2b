"""
Equipment directory used to seed the simulation.
"""

import logging
from typing import Any, Dict, Iterable, List

from factory_telemetry.models import EquipmentInfo, EquipmentStatus, SimulationConfigError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

class EquipmentDirectory:
    """Source of the equipment units the simulator should drive."""

    def get_active_equipment(self) -> List[EquipmentInfo]:
        raise NotImplementedError

class StaticEquipmentDirectory(EquipmentDirectory):
    """Directory backed by a fixed list of equipment units."""

    def __init__(self, equipment: Iterable[EquipmentInfo]):
        self._equipment = list(equipment)

    def get_active_equipment(self) -> List[EquipmentInfo]:
        return [eq for eq in self._equipment if eq.is_active]

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "StaticEquipmentDirectory":
        """
        Build a directory from plain mappings, e.g. the `equipment` section
        of a configuration file.

        Each record needs `id` and `code`; `name` defaults to the code,
        `status` to offline and `active` to true.
        """
        equipment = []
        problems = []

        for index, record in enumerate(records or []):
            try:
                equipment.append(EquipmentInfo(
                    equipment_id=str(record["id"]),
                    code=str(record["code"]),
                    name=str(record.get("name", record["code"])),
                    status=EquipmentStatus.parse(record.get("status", "offline")),
                    is_active=bool(record.get("active", True))
                ))
            except (KeyError, TypeError, ValueError) as e:
                problems.append(f"equipment record {index}: {e}")

        if problems:
            raise SimulationConfigError(problems)

        logger.info(f"Loaded {len(equipment)} equipment records")
        return cls(equipment)

def demo_equipment(count: int = 6) -> StaticEquipmentDirectory:
    """A small mixed fleet for demos."""
    statuses = [
        EquipmentStatus.RUNNING, EquipmentStatus.RUNNING, EquipmentStatus.IDLE,
        EquipmentStatus.RUNNING, EquipmentStatus.SETUP, EquipmentStatus.MAINTENANCE
    ]
    return StaticEquipmentDirectory(
        EquipmentInfo(
            equipment_id=f"EQ-{i + 1:03d}",
            code=f"CNC_{i + 1:03d}",
            name=f"CNC Machine {i + 1}",
            status=statuses[i % len(statuses)]
        )
        for i in range(count)
    )
