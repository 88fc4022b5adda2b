"""
Telemetry data source backed by the simulation scheduler.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from factory_telemetry.models import ConnectionStatusChanged
from factory_telemetry.events import EventBus
from factory_telemetry.scheduler import SimulationScheduler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

class SimulatorDataSource:
    """
    Presents the simulator as a connectable data source.

    Connection changes are published on the bus as ConnectionStatusChanged
    events; telemetry events flow through the same bus from the scheduler.
    """

    mode = "simulation"

    def __init__(self, scheduler: SimulationScheduler, bus: Optional[EventBus] = None):
        self.scheduler = scheduler
        self.bus = bus if bus is not None else scheduler.bus
        self.is_connected = False
        self.status_message = "Disconnected"

    def _announce(self, message: str):
        self.bus.publish(ConnectionStatusChanged(
            is_connected=self.is_connected,
            mode=self.mode,
            message=message,
            timestamp=datetime.now(timezone.utc)
        ))

    def start(self):
        logger.info("Starting simulator data source...")
        try:
            self.scheduler.start()
        except Exception as e:
            self.is_connected = False
            self.status_message = f"Failed to start: {e}"
            logger.error(f"Failed to start simulator data source: {e}")
            raise

        self.is_connected = True
        self.status_message = "Simulation running"
        self._announce("Simulation started successfully")
        logger.info("Simulator data source started")

    def stop(self):
        logger.info("Stopping simulator data source...")
        self.scheduler.stop()
        self.is_connected = False
        self.status_message = "Simulation stopped"
        self._announce("Simulation stopped")
        logger.info("Simulator data source stopped")
