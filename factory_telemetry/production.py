"""
Production Output Generator.
Emits unit and defect counts for equipment that is currently running.
"""

import math
from datetime import datetime
from typing import Optional

import numpy as np

from factory_telemetry.models import (
    EquipmentSimulationState, EquipmentStatus, ProductionBatch
)

MIN_UNITS = 5
MAX_UNITS = 20
NORMAL_DEFECT_RATE = 0.02
ANOMALY_DEFECT_RATE = 0.15

class ProductionGenerator:
    """Per-tick production output for running equipment."""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()

    def generate(self, state: EquipmentSimulationState,
                 timestamp: datetime) -> Optional[ProductionBatch]:
        """Return a batch for running equipment, None for any other status."""
        if state.current_status != EquipmentStatus.RUNNING:
            return None

        units = int(self.rng.integers(MIN_UNITS, MAX_UNITS, endpoint=True))
        defect_rate = ANOMALY_DEFECT_RATE if state.is_in_anomaly_state else NORMAL_DEFECT_RATE
        defects = math.floor(units * defect_rate)

        return ProductionBatch(
            equipment_id=state.equipment_id,
            equipment_code=state.equipment_code,
            units_produced=units,
            defect_count=defects,
            timestamp=timestamp
        )
