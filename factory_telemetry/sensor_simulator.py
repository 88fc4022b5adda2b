"""
Sensor Value Generator for simulated factory equipment.
Produces smoothly evolving sensor readings with status-dependent levels,
cyclical oscillation, noise and injected anomalies.
"""

import math
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np

from factory_telemetry.models import (
    EquipmentSimulationState, EquipmentStatus, SensorReading, SensorTypeConfig
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Scale applied to a sensor's base value depending on the operating status.
STATUS_MULTIPLIERS = {
    EquipmentStatus.RUNNING: 1.1,
    EquipmentStatus.IDLE: 0.6,
    EquipmentStatus.WARNING: 1.3,
    EquipmentStatus.ERROR: 1.5,
    EquipmentStatus.MAINTENANCE: 0.4,
    EquipmentStatus.SETUP: 0.8,
}
DEFAULT_STATUS_MULTIPLIER = 0.2

TREND_STEP = 0.05
CYCLE_PHASE_STEP = 0.1
CYCLICAL_AMPLITUDE = 0.3
SMOOTHING_FACTOR = 0.3

def status_multiplier(status: EquipmentStatus) -> float:
    return STATUS_MULTIPLIERS.get(status, DEFAULT_STATUS_MULTIPLIER)

def status_adjusted_base(status: EquipmentStatus, config: SensorTypeConfig) -> float:
    """Nominal sensor value for equipment in the given status."""
    return config.base_value * status_multiplier(status)

class SensorSimulator:
    """
    Generates the next value of every configured sensor type for one
    equipment unit per tick.
    """

    def __init__(self, sensor_configs: Dict[str, SensorTypeConfig],
                 realistic_mode: bool = True,
                 anomaly_probability: float = 0.05,
                 recovery_probability: float = 0.2,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize the sensor simulator.

        Args:
            sensor_configs: Sensor types to simulate, keyed by name
            realistic_mode: Whether anomalies are injected at all
            anomaly_probability: Per-reading chance of an anomaly excursion
            recovery_probability: Per-reading chance of leaving the anomaly state
            rng: Random generator, seed it for reproducible output
        """
        self.sensor_configs = sensor_configs
        self.realistic_mode = realistic_mode
        self.anomaly_probability = anomaly_probability
        self.recovery_probability = recovery_probability
        self.rng = rng if rng is not None else np.random.default_rng()

    def generate_value(self, state: EquipmentSimulationState, sensor_name: str,
                       config: SensorTypeConfig) -> Tuple[float, bool]:
        """
        Advance one sensor of one equipment unit by a single step.

        Mutates trend_direction, cycle_phase, is_in_anomaly_state and the
        stored sensor value on the given state.

        Returns:
            The new value and whether it sits at or above the warning threshold
        """
        rng = self.rng
        current_value = state.sensor_values.get(sensor_name, config.base_value)
        base_target = status_adjusted_base(state.current_status, config)

        # Slow random walk, kept within [-1, 1]
        state.trend_direction += rng.uniform(-TREND_STEP, TREND_STEP)
        state.trend_direction = min(1.0, max(-1.0, state.trend_direction))

        state.cycle_phase += CYCLE_PHASE_STEP
        cyclical = math.sin(state.cycle_phase) * config.normal_variation * CYCLICAL_AMPLITUDE

        noise = rng.uniform(-0.5, 0.5) * config.normal_variation

        anomaly_component = 0.0
        if self.realistic_mode and rng.random() < self.anomaly_probability:
            anomaly_component = rng.uniform(-0.3, 0.7) * config.anomaly_variation
            if not state.is_in_anomaly_state:
                logger.debug(f"Anomaly injected on {state.equipment_code} ({sensor_name})")
            state.is_in_anomaly_state = True
        elif state.is_in_anomaly_state and rng.random() < self.recovery_probability:
            state.is_in_anomaly_state = False

        target = base_target + cyclical + noise + anomaly_component
        new_value = current_value + (target - current_value) * SMOOTHING_FACTOR
        new_value = min(config.max_value, max(config.min_value, new_value))

        state.sensor_values[sensor_name] = new_value
        return new_value, new_value >= config.warning_threshold

    def generate_readings(self, state: EquipmentSimulationState,
                          timestamp: datetime) -> List[SensorReading]:
        """
        Generate one reading per configured sensor type.

        Offline equipment produces nothing and its state is left untouched.
        """
        if state.current_status == EquipmentStatus.OFFLINE:
            return []

        readings = []
        for sensor_name, config in self.sensor_configs.items():
            value, is_anomaly = self.generate_value(state, sensor_name, config)
            readings.append(SensorReading(
                equipment_id=state.equipment_id,
                equipment_code=state.equipment_code,
                sensor_type=sensor_name,
                value=value,
                unit=config.unit,
                timestamp=timestamp,
                is_anomaly=is_anomaly
            ))

        return readings
