"""
Status Transition Engine.
Weighted random selection of the next operating status from a transition
probability table keyed by the current status.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

import numpy as np

from factory_telemetry.models import (
    EquipmentSimulationState, EquipmentStatus, StatusChanged
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TransitionTable = Dict[EquipmentStatus, Dict[EquipmentStatus, float]]

class StatusTransitionEngine:
    """Markov-style status transitions driven by a fixed probability table."""

    def __init__(self, transitions: TransitionTable,
                 rng: Optional[np.random.Generator] = None):
        self.transitions = transitions
        self.rng = rng if rng is not None else np.random.default_rng()

    def select_next_status(self, row: Dict[EquipmentStatus, float]) -> EquipmentStatus:
        """
        Pick a target from one transition row.

        Entries are walked in insertion order; the first one whose cumulative
        probability reaches the roll wins. If rounding leaves the roll above
        the total mass, the first entry of the row is returned.
        """
        roll = self.rng.random()
        cumulative = 0.0

        for status, probability in row.items():
            cumulative += probability
            if cumulative >= roll:
                return status

        return next(iter(row))

    def next_status(self, current: EquipmentStatus) -> Optional[EquipmentStatus]:
        """Next status for equipment in `current`, or None if it never transitions."""
        row = self.transitions.get(current)
        if not row:
            return None
        return self.select_next_status(row)

    def apply(self, state: EquipmentSimulationState,
              timestamp: datetime) -> Optional[StatusChanged]:
        """
        Run one status tick for one equipment unit.

        Returns a StatusChanged event when the status actually changed.
        """
        new_status = self.next_status(state.current_status)
        if new_status is None or new_status == state.current_status:
            return None

        previous_status = state.current_status
        state.current_status = new_status
        state.last_status_change = timestamp

        logger.debug(
            f"Equipment {state.equipment_code} status changed: "
            f"{previous_status.value} -> {new_status.value}"
        )

        return StatusChanged(
            equipment_id=state.equipment_id,
            equipment_code=state.equipment_code,
            equipment_name=state.equipment_name,
            previous_status=previous_status,
            new_status=new_status,
            timestamp=timestamp
        )
