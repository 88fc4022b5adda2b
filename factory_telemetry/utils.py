"""
Utility functions for the factory telemetry simulator.
Configuration loading, event recording and data export.
"""

import os
import json
import threading
import logging
from dataclasses import asdict, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Type

import pandas as pd
import yaml

from factory_telemetry.models import (
    AlarmRaised, ProductionBatch, SensorReading, SimulationConfigError,
    SimulationProfile, StatusChanged, TELEMETRY_EVENT_TYPES
)
from factory_telemetry.directory import StaticEquipmentDirectory
from factory_telemetry.events import EventBus

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

EVENT_NAMES = {
    SensorReading: 'sensor_reading',
    StatusChanged: 'status_changed',
    AlarmRaised: 'alarm_raised',
    ProductionBatch: 'production_batch',
}

class ConfigManager:
    """
    Loads the simulator configuration file.

    The file (YAML, or JSON by extension) may hold a `simulation` section
    with the profile and an `equipment` section listing directory records.
    """

    def __init__(self, config_path: Optional[str] = "config.yaml"):
        self.config_path = config_path
        self.config = self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, falling back to defaults if absent."""
        if not self.config_path or not os.path.exists(self.config_path):
            if self.config_path:
                logger.warning(f"Config file {self.config_path} not found, using defaults")
            return self.get_default_config()

        try:
            with open(self.config_path, 'r') as f:
                if self.config_path.endswith('.json'):
                    config = json.load(f)
                else:
                    config = yaml.safe_load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise SimulationConfigError([f"cannot parse {self.config_path}: {e}"]) from e

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise SimulationConfigError([f"{self.config_path} must contain a mapping"])

        logger.info(f"Loaded configuration from {self.config_path}")
        return config

    def get_default_config(self) -> Dict[str, Any]:
        return {
            'simulation': {},
            'equipment': []
        }

    def get(self, key_path: str, default=None):
        """Get configuration value using dot notation."""
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_profile(self) -> SimulationProfile:
        """Simulation profile described by the `simulation` section."""
        return SimulationProfile.from_dict(self.get('simulation', {}))

    def get_directory(self) -> Optional[StaticEquipmentDirectory]:
        """Equipment directory from the `equipment` section, None if empty."""
        records = self.get('equipment', [])
        if not records:
            return None
        return StaticEquipmentDirectory.from_records(records)

    def save_config(self):
        """Save current configuration to file."""
        with open(self.config_path, 'w') as f:
            yaml.safe_dump(self.config, f, default_flow_style=False)
        logger.info(f"Configuration saved to {self.config_path}")

def _event_row(event) -> Dict[str, Any]:
    row = asdict(event)
    for key, value in row.items():
        if isinstance(value, Enum):
            row[key] = value.value
    return row

def events_to_dataframe(events: List[Any], event_type: Type) -> pd.DataFrame:
    """One row per event, enum fields flattened to their values."""
    columns = [f.name for f in fields(event_type)]
    if not events:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame([_event_row(e) for e in events], columns=columns)
    df['timestamp'] = pd.to_datetime(df['timestamp'])
    return df

class EventRecorder:
    """Subscribes to all telemetry events and keeps them in memory."""

    def __init__(self, bus: EventBus):
        self._events: Dict[Type, List[Any]] = {t: [] for t in TELEMETRY_EVENT_TYPES}
        self._lock = threading.Lock()
        self._subscriptions = [
            bus.subscribe(event_type, self._record) for event_type in TELEMETRY_EVENT_TYPES
        ]

    def _record(self, event):
        with self._lock:
            self._events[type(event)].append(event)

    def events(self, event_type: Type) -> List[Any]:
        with self._lock:
            return list(self._events.get(event_type, []))

    def summary(self) -> Dict[str, int]:
        with self._lock:
            return {EVENT_NAMES[t]: len(events) for t, events in self._events.items()}

    def to_dataframe(self, event_type: Type) -> pd.DataFrame:
        return events_to_dataframe(self.events(event_type), event_type)

    def to_dataframes(self) -> Dict[str, pd.DataFrame]:
        return {EVENT_NAMES[t]: self.to_dataframe(t) for t in TELEMETRY_EVENT_TYPES}

    def clear(self):
        with self._lock:
            for events in self._events.values():
                events.clear()

    def close(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()

def export_events(data: pd.DataFrame, file_path: str, format: str = 'csv'):
    """Export recorded events to file."""
    if format.lower() == 'csv':
        data.to_csv(file_path, index=False)
    elif format.lower() == 'json':
        data.to_json(file_path, orient='records', date_format='iso')
    else:
        raise ValueError(f"Unsupported format: {format}")

    logger.info(f"Exported {len(data)} records to {file_path}")
