"""
Unit tests for the simulation scheduler and the simulator data source.
"""

import time
import threading
import pytest
import numpy as np
from collections import defaultdict
from factory_telemetry.models import (
    AlarmRaised, AlarmSeverity, ConnectionStatusChanged, EquipmentInfo,
    EquipmentStatus, ProductionBatch, SensorReading, SensorTypeConfig,
    SimulationConfigError, SimulationProfile, StatusChanged
)
from factory_telemetry.directory import EquipmentDirectory, StaticEquipmentDirectory
from factory_telemetry.events import EventBus
from factory_telemetry.scheduler import (
    SimulationScheduler, MIN_TICK_INTERVAL, SENSOR_CYCLE, STATUS_CYCLE, PRODUCTION_CYCLE
)
from factory_telemetry.data_source import SimulatorDataSource
from factory_telemetry.utils import EventRecorder

TEMPERATURE = SensorTypeConfig(
    base_value=50.0, min_value=0.0, max_value=100.0,
    normal_variation=10.0, anomaly_variation=50.0,
    warning_threshold=65.0, error_threshold=80.0, unit="°C"
)

def make_profile(**overrides):
    settings = dict(
        sensor_configs={"temperature": TEMPERATURE},
        sensor_update_interval_ms=50,
        status_update_interval_ms=50,
        production_update_interval_ms=50,
        sensor_initial_delay_ms=0,
        status_initial_delay_ms=0,
        production_initial_delay_ms=0,
    )
    settings.update(overrides)
    return SimulationProfile(**settings)

def make_directory(*statuses):
    return StaticEquipmentDirectory(
        EquipmentInfo(f"EQ-{i + 1}", f"CNC_{i + 1:03d}", f"CNC {i + 1}", status)
        for i, status in enumerate(statuses)
    )

def live_cycle_threads(name):
    return [t for t in threading.enumerate() if t.name == f"telemetry-{name}-cycle" and t.is_alive()]

class FailingDirectory(EquipmentDirectory):
    def get_active_equipment(self):
        raise RuntimeError("directory unavailable")

class TestSchedulerLifecycle:
    """Test cases for start/stop behaviour."""

    @pytest.fixture
    def scheduler(self):
        scheduler = SimulationScheduler(
            make_directory(EquipmentStatus.RUNNING, EquipmentStatus.IDLE),
            make_profile(),
            seed=42
        )
        yield scheduler
        scheduler.close()

    def test_initial_state(self, scheduler):
        assert scheduler.is_running == False
        assert scheduler.speed_multiplier == 1.0
        assert len(scheduler.state_store) == 0

    def test_stop_before_start_is_noop(self, scheduler):
        scheduler.stop()
        scheduler.stop()

        assert scheduler.is_running == False

    def test_start_and_stop(self, scheduler):
        scheduler.start()

        assert scheduler.is_running == True
        assert len(scheduler.state_store) == 2
        for name in (SENSOR_CYCLE, STATUS_CYCLE, PRODUCTION_CYCLE):
            assert len(live_cycle_threads(name)) == 1

        scheduler.stop()

        assert scheduler.is_running == False
        assert len(scheduler.state_store) == 0
        for name in (SENSOR_CYCLE, STATUS_CYCLE, PRODUCTION_CYCLE):
            assert live_cycle_threads(name) == []

    def test_double_start_runs_one_set_of_cycles(self, scheduler):
        scheduler.start()
        scheduler.start()

        for name in (SENSOR_CYCLE, STATUS_CYCLE, PRODUCTION_CYCLE):
            assert len(live_cycle_threads(name)) == 1

    def test_restart(self, scheduler):
        scheduler.start()
        scheduler.stop()
        scheduler.start()

        assert scheduler.is_running == True
        assert len(scheduler.state_store) == 2

    def test_ticks_fire(self, scheduler):
        scheduler.start()
        time.sleep(0.4)
        scheduler.stop()

        for name in (SENSOR_CYCLE, STATUS_CYCLE, PRODUCTION_CYCLE):
            assert scheduler.tick_counts[name] >= 2

    def test_no_ticks_after_stop(self, scheduler):
        scheduler.start()
        time.sleep(0.2)
        scheduler.stop()
        counts = dict(scheduler.tick_counts)
        time.sleep(0.2)

        assert scheduler.tick_counts == counts

    def test_config_error_aborts_start(self):
        bad_sensor = SensorTypeConfig(
            base_value=50.0, min_value=0.0, max_value=100.0,
            normal_variation=10.0, anomaly_variation=50.0,
            warning_threshold=90.0, error_threshold=80.0
        )
        scheduler = SimulationScheduler(
            make_directory(EquipmentStatus.RUNNING),
            make_profile(sensor_configs={"temperature": bad_sensor})
        )

        with pytest.raises(SimulationConfigError):
            scheduler.start()

        assert scheduler.is_running == False
        assert len(scheduler.state_store) == 0
        scheduler.close()

    def test_directory_failure_aborts_start(self):
        scheduler = SimulationScheduler(FailingDirectory(), make_profile())

        with pytest.raises(RuntimeError):
            scheduler.start()

        assert scheduler.is_running == False
        scheduler.close()

    def test_close_stops_and_closes_bus(self):
        scheduler = SimulationScheduler(make_directory(EquipmentStatus.RUNNING), make_profile())
        EventRecorder(scheduler.bus)
        scheduler.start()

        scheduler.close()

        assert scheduler.is_running == False
        assert scheduler.bus.subscriber_count() == 0
        with pytest.raises(RuntimeError):
            scheduler.start()

    def test_shared_bus_left_open(self):
        bus = EventBus()
        EventRecorder(bus)

        with SimulationScheduler(make_directory(EquipmentStatus.RUNNING), make_profile(), bus=bus) as scheduler:
            scheduler.start()

        assert scheduler.is_running == False
        assert bus.subscriber_count() == 4
        bus.close()

class TestSpeedMultiplier:
    """Test cases for interval scaling."""

    def test_invalid_values(self):
        scheduler = SimulationScheduler(make_directory(EquipmentStatus.RUNNING), make_profile())

        for value in (0, -1.0, float("nan")):
            with pytest.raises(ValueError):
                scheduler.speed_multiplier = value

        with pytest.raises(ValueError):
            SimulationScheduler(make_directory(), make_profile(), speed_multiplier=0)

    def test_effective_intervals(self):
        profile = SimulationProfile.default()
        with SimulationScheduler(make_directory(EquipmentStatus.RUNNING), profile,
                                 speed_multiplier=2.0) as scheduler:
            scheduler.start()

            assert scheduler.effective_intervals[SENSOR_CYCLE] == pytest.approx(1.0)
            assert scheduler.effective_intervals[STATUS_CYCLE] == pytest.approx(2.5)
            assert scheduler.effective_intervals[PRODUCTION_CYCLE] == pytest.approx(5.0)

    def test_change_applies_on_next_start(self):
        profile = SimulationProfile.default()
        with SimulationScheduler(make_directory(EquipmentStatus.RUNNING), profile) as scheduler:
            scheduler.start()
            scheduler.speed_multiplier = 4.0

            assert scheduler.effective_intervals[SENSOR_CYCLE] == pytest.approx(2.0)

            scheduler.stop()
            scheduler.start()

            assert scheduler.effective_intervals[SENSOR_CYCLE] == pytest.approx(0.5)

    def test_huge_speed_still_stops(self):
        """Intervals are floored so cycles keep checking for stop."""
        scheduler = SimulationScheduler(make_directory(EquipmentStatus.RUNNING), make_profile(),
                                        speed_multiplier=1e18)
        scheduler.start()
        time.sleep(0.3)

        assert all(v == MIN_TICK_INTERVAL for v in scheduler.effective_intervals.values())

        stopper = threading.Thread(target=scheduler.stop, daemon=True)
        stopper.start()
        stopper.join(5.0)

        assert not stopper.is_alive()
        assert scheduler.is_running == False
        assert scheduler.tick_counts[SENSOR_CYCLE] > 1
        scheduler.close()

    def _mean_sensor_period(self, speed):
        profile = make_profile(
            sensor_update_interval_ms=200,
            status_update_interval_ms=60000,
            production_update_interval_ms=60000,
            status_initial_delay_ms=60000,
            production_initial_delay_ms=60000,
            realistic_mode=False
        )
        with SimulationScheduler(make_directory(EquipmentStatus.RUNNING), profile,
                                 seed=1, speed_multiplier=speed) as scheduler:
            recorder = EventRecorder(scheduler.bus)
            scheduler.start()
            time.sleep(1.3)
            scheduler.stop()
            scheduler.bus.wait_until_idle(timeout=2.0)

            stamps = [r.timestamp for r in recorder.events(SensorReading)]

        periods = [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:])]
        return float(np.mean(periods))

    def test_double_speed_halves_period(self):
        normal = self._mean_sensor_period(1.0)
        fast = self._mean_sensor_period(2.0)

        assert normal == pytest.approx(0.2, rel=0.3)
        assert 0.35 < fast / normal < 0.65

class TestTicks:
    """Test cases for synchronously driven ticks."""

    @pytest.fixture
    def bus(self):
        bus = EventBus()
        yield bus
        bus.close()

    def make_scheduler(self, bus, *statuses, **profile_overrides):
        scheduler = SimulationScheduler(make_directory(*statuses),
                                        make_profile(**profile_overrides), bus=bus, seed=7)
        scheduler.initialize_equipment_states()
        return scheduler

    def test_offline_equipment_never_reports(self, bus):
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(bus, EquipmentStatus.OFFLINE)

        for _ in range(100):
            assert scheduler.run_sensor_tick() == 0

        assert bus.wait_until_idle(timeout=2.0)
        assert recorder.events(SensorReading) == []
        assert recorder.events(AlarmRaised) == []

    def test_offline_unit_skipped_among_others(self, bus):
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(bus, EquipmentStatus.RUNNING, EquipmentStatus.OFFLINE)

        for _ in range(20):
            scheduler.run_sensor_tick()

        assert bus.wait_until_idle(timeout=2.0)
        readings = recorder.events(SensorReading)
        assert len(readings) == 20
        assert {r.equipment_id for r in readings} == {"EQ-1"}

    def test_readings_within_bounds(self, bus):
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(
            bus, EquipmentStatus.RUNNING, EquipmentStatus.ERROR, EquipmentStatus.WARNING,
            anomaly_probability=0.5
        )

        for _ in range(300):
            scheduler.run_sensor_tick()

        assert bus.wait_until_idle(timeout=5.0)
        readings = recorder.events(SensorReading)
        assert len(readings) == 900
        for reading in readings:
            assert TEMPERATURE.min_value <= reading.value <= TEMPERATURE.max_value

    def test_anomaly_scenario(self, bus):
        """Forced anomalies on a running unit produce warning or error alarms."""
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(bus, EquipmentStatus.RUNNING,
                                        anomaly_probability=1.0, realistic_mode=True)

        seen_anomaly_state = False
        for _ in range(50):
            scheduler.run_sensor_tick()
            seen_anomaly_state = seen_anomaly_state or scheduler.state_store.get("EQ-1").is_in_anomaly_state

        assert bus.wait_until_idle(timeout=2.0)
        alarms = recorder.events(AlarmRaised)
        assert seen_anomaly_state
        assert len(alarms) >= 1
        assert all(a.severity in (AlarmSeverity.WARNING, AlarmSeverity.ERROR) for a in alarms)
        assert all(a.code.startswith("ALM_TEMPERATURE_") for a in alarms)

    def test_production_only_for_running(self, bus):
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(bus, EquipmentStatus.RUNNING, EquipmentStatus.IDLE,
                                        EquipmentStatus.MAINTENANCE)

        for _ in range(30):
            assert scheduler.run_production_tick() == 1

        assert bus.wait_until_idle(timeout=2.0)
        batches = recorder.events(ProductionBatch)
        assert {b.equipment_id for b in batches} == {"EQ-1"}
        assert all(b.defect_count <= b.units_produced for b in batches)

    def test_status_tick_publishes_changes(self, bus):
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(
            bus, EquipmentStatus.RUNNING,
            status_transitions={
                EquipmentStatus.RUNNING: {EquipmentStatus.IDLE: 1.0},
                EquipmentStatus.IDLE: {EquipmentStatus.RUNNING: 1.0},
            }
        )

        for _ in range(4):
            assert scheduler.run_status_tick() == 1

        assert bus.wait_until_idle(timeout=2.0)
        changes = recorder.events(StatusChanged)
        assert [c.new_status for c in changes] == [
            EquipmentStatus.IDLE, EquipmentStatus.RUNNING,
            EquipmentStatus.IDLE, EquipmentStatus.RUNNING
        ]
        assert scheduler.state_store.get("EQ-1").current_status == EquipmentStatus.RUNNING

    def test_failing_equipment_is_isolated(self, bus, monkeypatch):
        recorder = EventRecorder(bus)
        scheduler = self.make_scheduler(bus, EquipmentStatus.RUNNING, EquipmentStatus.RUNNING)
        original = scheduler.sensor_simulator.generate_readings

        def flaky(state, timestamp):
            if state.equipment_id == "EQ-1":
                raise RuntimeError("sensor failure")
            return original(state, timestamp)

        monkeypatch.setattr(scheduler.sensor_simulator, "generate_readings", flaky)
        before = scheduler.state_store.get("EQ-1")

        assert scheduler.run_sensor_tick() >= 1

        assert bus.wait_until_idle(timeout=2.0)
        assert {r.equipment_id for r in recorder.events(SensorReading)} == {"EQ-2"}
        assert scheduler.state_store.get("EQ-1") == before

    def test_failing_tick_keeps_cycle_alive(self, bus):
        scheduler = SimulationScheduler(make_directory(EquipmentStatus.RUNNING),
                                        make_profile(), bus=bus)
        calls = []

        def broken_tick():
            calls.append(1)
            raise RuntimeError("tick failure")

        scheduler.run_production_tick = broken_tick
        scheduler.start()
        time.sleep(0.3)

        assert scheduler.is_running == True
        assert len(calls) >= 2
        assert len(live_cycle_threads(PRODUCTION_CYCLE)) == 1
        assert scheduler.tick_counts[SENSOR_CYCLE] >= 2
        scheduler.stop()

    def test_per_equipment_order_preserved(self, bus):
        """Readings of each unit arrive in generation order."""
        received = defaultdict(list)
        bus.subscribe(SensorReading, lambda r: received[r.equipment_id].append(r.timestamp))

        with SimulationScheduler(make_directory(EquipmentStatus.RUNNING, EquipmentStatus.SETUP),
                                 make_profile(sensor_update_interval_ms=10,
                                              status_initial_delay_ms=60000),
                                 bus=bus) as scheduler:
            scheduler.start()
            time.sleep(0.3)

        assert bus.wait_until_idle(timeout=2.0)
        for stamps in received.values():
            assert len(stamps) > 1
            assert stamps == sorted(stamps)

class TestSimulatorDataSource:
    """Test cases for SimulatorDataSource class."""

    def test_start_and_stop(self):
        with SimulationScheduler(make_directory(EquipmentStatus.RUNNING), make_profile()) as scheduler:
            statuses = []
            scheduler.bus.subscribe(ConnectionStatusChanged, statuses.append)
            source = SimulatorDataSource(scheduler)

            assert source.is_connected == False
            assert source.status_message == "Disconnected"

            source.start()
            assert source.is_connected == True
            assert source.status_message == "Simulation running"
            assert scheduler.is_running == True

            source.stop()
            assert source.is_connected == False
            assert scheduler.is_running == False

            assert scheduler.bus.wait_until_idle(timeout=2.0)
            assert [s.is_connected for s in statuses] == [True, False]
            assert all(s.mode == "simulation" for s in statuses)

    def test_failed_start(self):
        scheduler = SimulationScheduler(FailingDirectory(), make_profile())
        source = SimulatorDataSource(scheduler)

        with pytest.raises(RuntimeError):
            source.start()

        assert source.is_connected == False
        assert source.status_message.startswith("Failed to start")
        scheduler.close()

if __name__ == "__main__":
    pytest.main([__file__])
