"""
Equipment State Store.
Owns the mutable simulation state of every equipment unit and serializes
access to each entry so independently timed cycles never interleave their
read-modify-write of the same unit.
"""

import math
import threading
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Iterable, Iterator, Optional

import numpy as np

from factory_telemetry.models import (
    EquipmentInfo, EquipmentSimulationState, SensorTypeConfig
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

class _Entry:
    __slots__ = ("state", "lock")

    def __init__(self, state: EquipmentSimulationState):
        self.state = state
        self.lock = threading.Lock()

class EquipmentStateStore:
    """
    Indexed table of EquipmentSimulationState, one entry per active unit.

    Callers never receive the stored object itself: get() returns a copy,
    set() replaces the stored state, and edit() yields a working copy under
    the entry's lock and commits it when the block exits cleanly.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}
        self._table_lock = threading.Lock()

    def seed(self, equipment: Iterable[EquipmentInfo],
             sensor_configs: Dict[str, SensorTypeConfig],
             rng: Optional[np.random.Generator] = None) -> int:
        """
        Replace the table with fresh state for every active equipment unit.

        Args:
            equipment: Units reported by the equipment directory
            sensor_configs: Configured sensor types keyed by name
            rng: Random generator used for the initial jitter

        Returns:
            Number of seeded entries
        """
        rng = rng if rng is not None else np.random.default_rng()
        now = datetime.now(timezone.utc)
        entries = {}

        for info in equipment:
            if not info.is_active:
                continue

            sensor_values = {
                name: config.base_value + (rng.random() - 0.5) * config.normal_variation
                for name, config in sensor_configs.items()
            }
            entries[info.equipment_id] = _Entry(EquipmentSimulationState(
                equipment_id=info.equipment_id,
                equipment_code=info.code,
                equipment_name=info.name,
                current_status=info.status,
                sensor_values=sensor_values,
                last_status_change=now,
                trend_direction=1.0 if rng.random() > 0.5 else -1.0,
                cycle_phase=rng.random() * 2 * math.pi,
                is_in_anomaly_state=False
            ))

        with self._table_lock:
            self._entries = entries

        logger.info(f"Seeded simulation state for {len(entries)} equipment units")
        return len(entries)

    def clear(self):
        """Discard all simulation state."""
        with self._table_lock:
            self._entries = {}

    def equipment_ids(self) -> List[str]:
        """Snapshot of the equipment ids currently tracked."""
        with self._table_lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._entries)

    def __contains__(self, equipment_id: str) -> bool:
        with self._table_lock:
            return equipment_id in self._entries

    def _entry(self, equipment_id: str) -> _Entry:
        with self._table_lock:
            try:
                return self._entries[equipment_id]
            except KeyError:
                raise KeyError(f"Unknown equipment: {equipment_id}") from None

    def get(self, equipment_id: str) -> EquipmentSimulationState:
        """Return a copy of the current state of one equipment unit."""
        entry = self._entry(equipment_id)
        with entry.lock:
            return entry.state.copy()

    def set(self, equipment_id: str, state: EquipmentSimulationState):
        """Replace the stored state of one equipment unit."""
        if state.equipment_id != equipment_id:
            raise ValueError(
                f"State for {state.equipment_id} cannot be stored under {equipment_id}"
            )
        entry = self._entry(equipment_id)
        with entry.lock:
            entry.state = state.copy()

    @contextmanager
    def edit(self, equipment_id: str) -> Iterator[EquipmentSimulationState]:
        """
        Exclusive read-modify-write access to one equipment unit.

        The yielded copy is written back only if the block completes without
        raising, so a failed tick leaves the stored state untouched.
        """
        entry = self._entry(equipment_id)
        with entry.lock:
            working = entry.state.copy()
            yield working
            entry.state = working

    def snapshot(self) -> List[EquipmentSimulationState]:
        """Copies of every tracked state, in seeding order."""
        with self._table_lock:
            entries = list(self._entries.values())

        snapshot = []
        for entry in entries:
            with entry.lock:
                snapshot.append(entry.state.copy())
        return snapshot
