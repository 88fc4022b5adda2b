"""
Simulation Scheduler for synthetic factory telemetry.
Drives the sensor, status and production cycles on their own timers,
owns the start/stop lifecycle and publishes every generated event.
"""

import math
import time
import argparse
import threading
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import numpy as np

from factory_telemetry.models import SimulationProfile
from factory_telemetry.directory import EquipmentDirectory, demo_equipment
from factory_telemetry.state_store import EquipmentStateStore
from factory_telemetry.sensor_simulator import SensorSimulator
from factory_telemetry.alarm_evaluator import AlarmEvaluator
from factory_telemetry.status_transitions import StatusTransitionEngine
from factory_telemetry.production import ProductionGenerator
from factory_telemetry.events import EventBus

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SENSOR_CYCLE = "sensor"
STATUS_CYCLE = "status"
PRODUCTION_CYCLE = "production"
CYCLES = (SENSOR_CYCLE, STATUS_CYCLE, PRODUCTION_CYCLE)

# Floor for a cycle period in seconds, whatever the speed multiplier
MIN_TICK_INTERVAL = 0.001

class SimulationScheduler:
    """
    Runs the three telemetry cycles against a shared equipment state store.

    Each cycle fires on its own thread. Per-equipment state is mutated only
    inside EquipmentStateStore.edit(), which serializes the cycles on each
    unit, and every tick is isolated so a failure only costs that tick's
    events.
    """

    def __init__(self, directory: EquipmentDirectory,
                 profile: Optional[SimulationProfile] = None,
                 bus: Optional[EventBus] = None,
                 seed: Optional[int] = None,
                 speed_multiplier: float = 1.0):
        """
        Initialize the scheduler.

        Args:
            directory: Equipment directory queried on every start
            profile: Simulation profile, defaults to SimulationProfile.default()
            bus: Event bus to publish on; one is created (and owned) if omitted
            seed: Seed for reproducible random streams
            speed_multiplier: Positive factor dividing every cycle interval
        """
        self.directory = directory
        self.profile = profile if profile is not None else SimulationProfile.default()
        self._owns_bus = bus is None
        self.bus = bus if bus is not None else EventBus()
        self.state_store = EquipmentStateStore()

        self._seed_sequence = np.random.SeedSequence(seed)
        self._speed_multiplier = 1.0
        self.speed_multiplier = speed_multiplier

        self._lifecycle_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._is_running = False
        self._closed = False

        self.effective_intervals: Dict[str, float] = {}
        self.tick_counts: Dict[str, int] = {name: 0 for name in CYCLES}

        self._build_components()

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def speed_multiplier(self) -> float:
        return self._speed_multiplier

    @speed_multiplier.setter
    def speed_multiplier(self, value: float):
        if value is None or not value > 0:
            raise ValueError(f"speed_multiplier must be positive, got {value}")
        self._speed_multiplier = float(value)
        if getattr(self, "_is_running", False):
            logger.info(f"Speed multiplier set to {value}, applies from the next start")

    def _build_components(self):
        """Create the generators with independent random streams."""
        seeding, sensor, alarm, status, production = (
            np.random.default_rng(child) for child in self._seed_sequence.spawn(5)
        )
        profile = self.profile

        self._seeding_rng = seeding
        self.sensor_simulator = SensorSimulator(
            profile.sensor_configs,
            realistic_mode=profile.realistic_mode,
            anomaly_probability=profile.anomaly_probability,
            recovery_probability=profile.anomaly_recovery_probability,
            rng=sensor
        )
        self.alarm_evaluator = AlarmEvaluator(profile.alarm_probability, rng=alarm)
        self.transition_engine = StatusTransitionEngine(profile.status_transitions, rng=status)
        self.production_generator = ProductionGenerator(rng=production)

    def initialize_equipment_states(self) -> int:
        """Seed the state store from the equipment directory."""
        equipment = self.directory.get_active_equipment()
        return self.state_store.seed(equipment, self.profile.sensor_configs, self._seeding_rng)

    def _compute_intervals(self) -> Dict[str, float]:
        speed = self._speed_multiplier
        profile = self.profile
        intervals = {
            SENSOR_CYCLE: profile.sensor_update_interval_ms / speed / 1000.0,
            STATUS_CYCLE: profile.status_update_interval_ms / speed / 1000.0,
            PRODUCTION_CYCLE: profile.production_update_interval_ms / speed / 1000.0,
        }
        for name, interval in intervals.items():
            if interval < MIN_TICK_INTERVAL:
                logger.warning(
                    f"{name} interval {interval:.3g}s is below {MIN_TICK_INTERVAL}s, using the minimum"
                )
                intervals[name] = MIN_TICK_INTERVAL
        return intervals

    def _initial_delays(self) -> Dict[str, float]:
        profile = self.profile
        return {
            SENSOR_CYCLE: profile.sensor_initial_delay_ms / 1000.0,
            STATUS_CYCLE: profile.status_initial_delay_ms / 1000.0,
            PRODUCTION_CYCLE: profile.production_initial_delay_ms / 1000.0,
        }

    def start(self):
        """
        Start the simulation.

        Calling start() while running is a no-op. Configuration errors and
        equipment directory failures propagate and leave the scheduler stopped.
        """
        with self._lifecycle_lock:
            if self._closed:
                raise RuntimeError("Scheduler has been closed")
            if self._is_running:
                logger.warning("Simulation is already running")
                return

            logger.info("Starting factory data simulation...")

            self.profile.validate()
            self._build_components()
            self.initialize_equipment_states()

            self.effective_intervals = self._compute_intervals()
            delays = self._initial_delays()
            ticks = {
                SENSOR_CYCLE: self.run_sensor_tick,
                STATUS_CYCLE: self.run_status_tick,
                PRODUCTION_CYCLE: self.run_production_tick,
            }

            self._stop_event = threading.Event()
            self._threads = []
            for name in CYCLES:
                thread = threading.Thread(
                    target=self._run_cycle,
                    args=(name, ticks[name], self.effective_intervals[name],
                          delays[name], self._stop_event),
                    name=f"telemetry-{name}-cycle",
                    daemon=True
                )
                self._threads.append(thread)

            self._is_running = True
            for thread in self._threads:
                thread.start()

            logger.info(
                f"Factory data simulation started with {len(self.state_store)} equipment units "
                f"(speed x{self._speed_multiplier})"
            )

    def stop(self):
        """
        Stop the simulation and wait for in-flight ticks to finish.

        Calling stop() while stopped is a no-op.
        """
        with self._lifecycle_lock:
            if not self._is_running:
                return

            logger.info("Stopping factory data simulation...")
            self._stop_event.set()

            current = threading.current_thread()
            for thread in self._threads:
                if thread is not current:
                    thread.join()

            self._threads = []
            self.state_store.clear()
            self._is_running = False
            logger.info("Factory data simulation stopped")

    def close(self):
        """Stop the simulation, then release the event bus if we created it."""
        with self._lifecycle_lock:
            if self._closed:
                return
            self.stop()
            if self._owns_bus:
                self.bus.close()
            self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def _run_cycle(self, name: str, tick: Callable[[], int], interval: float,
                   initial_delay: float, stop_event: threading.Event):
        """Fire `tick` every `interval` seconds until the stop event is set."""
        if stop_event.wait(initial_delay):
            return

        next_fire = time.monotonic()
        while not stop_event.is_set():
            self._guarded_tick(name, tick)

            next_fire += interval
            now = time.monotonic()
            # Skip firings missed while a tick overran
            if next_fire <= now:
                next_fire += (math.floor((now - next_fire) / interval) + 1) * interval

            if stop_event.wait(next_fire - now):
                break

    def _guarded_tick(self, name: str, tick: Callable[[], int]):
        try:
            tick()
            self.tick_counts[name] += 1
        except Exception as e:
            logger.error(f"Error during {name} tick: {e}", exc_info=True)

    def run_sensor_tick(self) -> int:
        """
        Generate sensor readings (and occasional alarms) for every unit.

        Returns:
            Number of events published
        """
        timestamp = datetime.now(timezone.utc)
        sensor_configs = self.sensor_simulator.sensor_configs
        published = 0

        for equipment_id in self.state_store.equipment_ids():
            try:
                with self.state_store.edit(equipment_id) as state:
                    readings = self.sensor_simulator.generate_readings(state, timestamp)

                for reading in readings:
                    self.bus.publish(reading)
                    published += 1

                    alarm = self.alarm_evaluator.evaluate(
                        reading, sensor_configs[reading.sensor_type]
                    )
                    if alarm is not None:
                        self.bus.publish(alarm)
                        published += 1
            except Exception as e:
                logger.error(f"Error generating sensor data for {equipment_id}: {e}", exc_info=True)

        return published

    def run_status_tick(self) -> int:
        """Apply one status transition step to every unit."""
        timestamp = datetime.now(timezone.utc)
        published = 0

        for equipment_id in self.state_store.equipment_ids():
            try:
                with self.state_store.edit(equipment_id) as state:
                    event = self.transition_engine.apply(state, timestamp)

                if event is not None:
                    self.bus.publish(event)
                    published += 1
            except Exception as e:
                logger.error(f"Error updating status of {equipment_id}: {e}", exc_info=True)

        return published

    def run_production_tick(self) -> int:
        """Emit production output for every running unit."""
        timestamp = datetime.now(timezone.utc)
        published = 0

        for equipment_id in self.state_store.equipment_ids():
            try:
                with self.state_store.edit(equipment_id) as state:
                    batch = self.production_generator.generate(state, timestamp)

                if batch is not None:
                    self.bus.publish(batch)
                    published += 1
            except Exception as e:
                logger.error(f"Error generating production for {equipment_id}: {e}", exc_info=True)

        return published

def main():
    """Run the simulator for a while and summarize what it produced."""
    from factory_telemetry.utils import ConfigManager, EventRecorder, export_events

    parser = argparse.ArgumentParser(description="Synthetic factory telemetry simulator")
    parser.add_argument("--config", help="YAML or JSON configuration file")
    parser.add_argument("--duration", type=float, default=30.0, help="Seconds to run")
    parser.add_argument("--speed", type=float, default=1.0, help="Speed multiplier")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--export", help="Write recorded events to this CSV path prefix")
    args = parser.parse_args()

    config_manager = ConfigManager(args.config)
    profile = config_manager.get_profile()
    directory = config_manager.get_directory() or demo_equipment()

    with SimulationScheduler(directory, profile, seed=args.seed,
                             speed_multiplier=args.speed) as scheduler:
        recorder = EventRecorder(scheduler.bus)
        scheduler.start()
        try:
            time.sleep(args.duration)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        scheduler.stop()
        scheduler.bus.wait_until_idle(timeout=5.0)

        summary = recorder.summary()
        print("Events generated:")
        for event_name, count in summary.items():
            print(f"  {event_name}: {count}")

        if args.export:
            for event_name, frame in recorder.to_dataframes().items():
                export_events(frame, f"{args.export}_{event_name}.csv", format='csv')

if __name__ == "__main__":
    main()
