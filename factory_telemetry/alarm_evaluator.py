"""
Alarm Threshold Evaluator.
Turns anomalous sensor readings into occasional threshold alarms.
"""

from typing import Optional

import numpy as np

from factory_telemetry.models import (
    AlarmRaised, AlarmSeverity, SensorReading, SensorTypeConfig
)


DEFAULT_ALARM_PROBABILITY = 0.3

def alarm_severity(value: float, config: SensorTypeConfig) -> AlarmSeverity:
    """Severity tier of a value against the sensor thresholds."""
    if value >= config.error_threshold:
        return AlarmSeverity.ERROR
    if value >= config.warning_threshold:
        return AlarmSeverity.WARNING
    return AlarmSeverity.INFORMATION

def alarm_code(sensor_type: str, value: float, config: SensorTypeConfig) -> str:
    tier = "HIGH" if value >= config.error_threshold else "WARN"
    return f"ALM_{sensor_type.upper()}_{tier}"

def alarm_message(sensor_type: str, value: float, config: SensorTypeConfig) -> str:
    return (
        f"{sensor_type} value {value:.1f}{config.unit} exceeds threshold "
        f"({config.warning_threshold}{config.unit})"
    )

class AlarmEvaluator:
    """
    Decides whether an anomalous reading raises an alarm.

    Only a fraction of qualifying readings raise one so a sustained
    excursion does not flood downstream alert pipelines.
    """

    def __init__(self, alarm_probability: float = DEFAULT_ALARM_PROBABILITY,
                 rng: Optional[np.random.Generator] = None):
        self.alarm_probability = alarm_probability
        self.rng = rng if rng is not None else np.random.default_rng()

    def evaluate(self, reading: SensorReading,
                 config: SensorTypeConfig) -> Optional[AlarmRaised]:
        """Return an alarm for the reading, or None."""
        if not reading.is_anomaly:
            return None

        if self.rng.random() >= self.alarm_probability:
            return None

        return AlarmRaised(
            equipment_id=reading.equipment_id,
            equipment_code=reading.equipment_code,
            code=alarm_code(reading.sensor_type, reading.value, config),
            severity=alarm_severity(reading.value, config),
            message=alarm_message(reading.sensor_type, reading.value, config),
            timestamp=reading.timestamp
        )
