"""
Data models for the factory telemetry simulation.
Defines equipment statuses, sensor configuration, simulation profiles,
per-equipment simulation state and the events published by the simulator.
"""

import math
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from dataclasses import dataclass, field
from enum import Enum


ROW_SUM_TOLERANCE = 1e-6

class SimulationConfigError(ValueError):
    """Raised when a simulation profile is missing or invalid."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid simulation configuration: " + "; ".join(self.problems))

class EquipmentStatus(Enum):
    """Operating status of an equipment unit."""
    OFFLINE = "offline"
    IDLE = "idle"
    RUNNING = "running"
    WARNING = "warning"
    ERROR = "error"
    MAINTENANCE = "maintenance"
    SETUP = "setup"

    @classmethod
    def parse(cls, value) -> "EquipmentStatus":
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for status in cls:
            if status.value == text:
                return status
        raise ValueError(f"Unknown equipment status: {value}")

class AlarmSeverity(Enum):
    """Severity levels for alarms."""
    INFORMATION = "information"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

@dataclass(frozen=True)
class SensorTypeConfig:
    """Configuration for simulating one sensor type."""
    base_value: float
    min_value: float
    max_value: float
    normal_variation: float
    anomaly_variation: float
    warning_threshold: float
    error_threshold: float
    unit: str = ""

    def problems(self, name: str) -> List[str]:
        """Return a description of every invariant this config violates."""
        found = []
        if not self.min_value <= self.base_value <= self.max_value:
            found.append(
                f"sensor '{name}': base_value {self.base_value} outside "
                f"[{self.min_value}, {self.max_value}]"
            )
        if not self.warning_threshold < self.error_threshold:
            found.append(
                f"sensor '{name}': warning_threshold {self.warning_threshold} "
                f"must be below error_threshold {self.error_threshold}"
            )
        if self.normal_variation < 0 or self.anomaly_variation < 0:
            found.append(f"sensor '{name}': variations must be non-negative")
        return found

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SensorTypeConfig":
        return cls(
            base_value=float(data["base_value"]),
            min_value=float(data["min_value"]),
            max_value=float(data["max_value"]),
            normal_variation=float(data["normal_variation"]),
            anomaly_variation=float(data["anomaly_variation"]),
            warning_threshold=float(data["warning_threshold"]),
            error_threshold=float(data["error_threshold"]),
            unit=str(data.get("unit", "")),
        )

def _default_sensor_configs() -> Dict[str, SensorTypeConfig]:
    return {
        "Temperature": SensorTypeConfig(
            base_value=45.0, min_value=20.0, max_value=100.0,
            normal_variation=5.0, anomaly_variation=25.0,
            warning_threshold=70.0, error_threshold=85.0, unit="°C"
        ),
        "Vibration": SensorTypeConfig(
            base_value=2.5, min_value=0.0, max_value=15.0,
            normal_variation=0.5, anomaly_variation=5.0,
            warning_threshold=7.0, error_threshold=10.0, unit="mm/s"
        ),
        "Pressure": SensorTypeConfig(
            base_value=5.0, min_value=0.0, max_value=10.0,
            normal_variation=0.3, anomaly_variation=2.0,
            warning_threshold=7.5, error_threshold=9.0, unit="bar"
        ),
        "Current": SensorTypeConfig(
            base_value=15.0, min_value=0.0, max_value=50.0,
            normal_variation=2.0, anomaly_variation=15.0,
            warning_threshold=35.0, error_threshold=45.0, unit="A"
        ),
        "Speed": SensorTypeConfig(
            base_value=1200.0, min_value=0.0, max_value=3000.0,
            normal_variation=50.0, anomaly_variation=500.0,
            warning_threshold=2500.0, error_threshold=2800.0, unit="RPM"
        ),
    }

def _default_status_transitions() -> Dict[EquipmentStatus, Dict[EquipmentStatus, float]]:
    S = EquipmentStatus
    return {
        S.RUNNING: {S.RUNNING: 0.90, S.IDLE: 0.05, S.WARNING: 0.03, S.ERROR: 0.01, S.MAINTENANCE: 0.01},
        S.IDLE: {S.IDLE: 0.70, S.RUNNING: 0.25, S.OFFLINE: 0.03, S.SETUP: 0.02},
        S.WARNING: {S.WARNING: 0.40, S.RUNNING: 0.35, S.ERROR: 0.15, S.MAINTENANCE: 0.10},
        S.ERROR: {S.ERROR: 0.30, S.MAINTENANCE: 0.50, S.OFFLINE: 0.15, S.IDLE: 0.05},
        S.MAINTENANCE: {S.MAINTENANCE: 0.60, S.IDLE: 0.30, S.RUNNING: 0.10},
        S.OFFLINE: {S.OFFLINE: 0.70, S.IDLE: 0.25, S.SETUP: 0.05},
        S.SETUP: {S.SETUP: 0.50, S.RUNNING: 0.35, S.IDLE: 0.15},
    }

@dataclass
class SimulationProfile:
    """Configuration profile for the factory telemetry simulation."""
    sensor_configs: Dict[str, SensorTypeConfig] = field(default_factory=_default_sensor_configs)
    status_transitions: Dict[EquipmentStatus, Dict[EquipmentStatus, float]] = field(
        default_factory=_default_status_transitions
    )
    sensor_update_interval_ms: float = 2000
    status_update_interval_ms: float = 5000
    production_update_interval_ms: float = 10000
    sensor_initial_delay_ms: float = 0
    status_initial_delay_ms: float = 1000
    production_initial_delay_ms: float = 2000
    realistic_mode: bool = True
    anomaly_probability: float = 0.05
    anomaly_recovery_probability: float = 0.2
    alarm_probability: float = 0.3

    @classmethod
    def default(cls) -> "SimulationProfile":
        return cls()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SimulationProfile":
        """
        Build a profile from a plain mapping (as loaded from YAML or JSON).

        Missing keys keep their defaults. Structural problems (bad status
        names, non-numeric values) are reported as SimulationConfigError.
        """
        profile = cls()
        if not data:
            return profile

        problems = []
        scalar_fields = [
            'sensor_update_interval_ms', 'status_update_interval_ms',
            'production_update_interval_ms', 'sensor_initial_delay_ms',
            'status_initial_delay_ms', 'production_initial_delay_ms',
            'anomaly_probability', 'anomaly_recovery_probability', 'alarm_probability'
        ]
        for key in scalar_fields:
            if key in data:
                try:
                    setattr(profile, key, float(data[key]))
                except (TypeError, ValueError):
                    problems.append(f"{key} must be a number, got {data[key]!r}")

        if 'realistic_mode' in data:
            profile.realistic_mode = bool(data['realistic_mode'])

        if 'sensor_configs' in data:
            sensors = {}
            for name, sensor_data in (data['sensor_configs'] or {}).items():
                try:
                    sensors[name] = SensorTypeConfig.from_dict(sensor_data)
                except (KeyError, TypeError, ValueError) as e:
                    problems.append(f"sensor '{name}': malformed config ({e})")
            profile.sensor_configs = sensors

        if 'status_transitions' in data:
            table = {}
            for source, row in (data['status_transitions'] or {}).items():
                try:
                    source_status = EquipmentStatus.parse(source)
                    table[source_status] = {
                        EquipmentStatus.parse(target): float(probability)
                        for target, probability in (row or {}).items()
                    }
                except (TypeError, ValueError) as e:
                    problems.append(f"transition row '{source}': {e}")
            profile.status_transitions = table

        if problems:
            raise SimulationConfigError(problems)
        return profile

    def validate(self):
        """Raise SimulationConfigError listing every invalid setting."""
        problems = []

        if not self.sensor_configs:
            problems.append("at least one sensor type must be configured")
        for name, config in self.sensor_configs.items():
            problems.extend(config.problems(name))

        if self.status_transitions is None:
            problems.append("status transition table is missing")
        else:
            for source, row in self.status_transitions.items():
                if not isinstance(source, EquipmentStatus):
                    problems.append(f"transition row key {source!r} is not an EquipmentStatus")
                    continue
                if not row:
                    problems.append(f"transition row for {source.value} is empty")
                    continue
                for target, probability in row.items():
                    if not isinstance(target, EquipmentStatus):
                        problems.append(
                            f"transition target {target!r} in row {source.value} "
                            f"is not an EquipmentStatus"
                        )
                    elif not 0.0 <= probability <= 1.0:
                        problems.append(
                            f"transition {source.value}->{target.value} probability "
                            f"{probability} outside [0, 1]"
                        )
                total = math.fsum(row.values())
                if abs(total - 1.0) > ROW_SUM_TOLERANCE:
                    problems.append(
                        f"transition row for {source.value} sums to {total:.6f}, expected 1"
                    )

        for key in ['sensor_update_interval_ms', 'status_update_interval_ms',
                    'production_update_interval_ms']:
            if getattr(self, key) <= 0:
                problems.append(f"{key} must be positive")
        for key in ['sensor_initial_delay_ms', 'status_initial_delay_ms',
                    'production_initial_delay_ms']:
            if getattr(self, key) < 0:
                problems.append(f"{key} must not be negative")
        for key in ['anomaly_probability', 'anomaly_recovery_probability', 'alarm_probability']:
            if not 0.0 <= getattr(self, key) <= 1.0:
                problems.append(f"{key} must be within [0, 1]")

        if problems:
            raise SimulationConfigError(problems)

@dataclass(frozen=True)
class EquipmentInfo:
    """An equipment unit as reported by the equipment directory."""
    equipment_id: str
    code: str
    name: str
    status: EquipmentStatus = EquipmentStatus.OFFLINE
    is_active: bool = True

@dataclass
class EquipmentSimulationState:
    """Mutable simulation state tracked for one equipment unit."""
    equipment_id: str
    equipment_code: str
    equipment_name: str
    current_status: EquipmentStatus
    sensor_values: Dict[str, float] = field(default_factory=dict)
    last_status_change: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trend_direction: float = 0.0
    cycle_phase: float = 0.0
    is_in_anomaly_state: bool = False

    def copy(self) -> "EquipmentSimulationState":
        return EquipmentSimulationState(
            equipment_id=self.equipment_id,
            equipment_code=self.equipment_code,
            equipment_name=self.equipment_name,
            current_status=self.current_status,
            sensor_values=dict(self.sensor_values),
            last_status_change=self.last_status_change,
            trend_direction=self.trend_direction,
            cycle_phase=self.cycle_phase,
            is_in_anomaly_state=self.is_in_anomaly_state,
        )

@dataclass(frozen=True)
class SensorReading:
    """A generated sensor value."""
    equipment_id: str
    equipment_code: str
    sensor_type: str
    value: float
    unit: str
    timestamp: datetime
    is_anomaly: bool

@dataclass(frozen=True)
class StatusChanged:
    """An equipment status transition."""
    equipment_id: str
    equipment_code: str
    equipment_name: str
    previous_status: EquipmentStatus
    new_status: EquipmentStatus
    timestamp: datetime

@dataclass(frozen=True)
class AlarmRaised:
    """A threshold alarm raised for an anomalous reading."""
    equipment_id: str
    equipment_code: str
    code: str
    severity: AlarmSeverity
    message: str
    timestamp: datetime

@dataclass(frozen=True)
class ProductionBatch:
    """Production output of a running equipment unit for one tick."""
    equipment_id: str
    equipment_code: str
    units_produced: int
    defect_count: int
    timestamp: datetime

@dataclass(frozen=True)
class ConnectionStatusChanged:
    """Connection status of a telemetry data source."""
    is_connected: bool
    mode: str
    message: str
    timestamp: datetime

TELEMETRY_EVENT_TYPES = (SensorReading, StatusChanged, AlarmRaised, ProductionBatch)
