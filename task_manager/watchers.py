"""
watchers.py - Event sources for the mission state machines

Each watcher is a daemon thread that polls one external source at a fixed
rate and turns what it sees into a callback (which normally applies an
event to the mission). All watchers of a mission share its
CancellationToken and exit within one polling interval of cancellation:

    watcher = BatteryWatchdog(telemetry, 10.0, on_low_voltage, 1.0, token)
    watcher.start()
    ...
    token.cancel('teardown')
    watcher.join(timeout=2.0)
"""

import logging
import math
import threading
import time
from typing import Callable, Optional

from task_manager import hole_transit
from task_manager.cancellation import CancellationToken
from task_manager.geometry import DetectedObject, Pose, fix_aperture_convention
from task_manager.hole_transit import TransitDetectorState
from task_manager.interfaces import ObjectKind, PerceptionClient, ServiceCallError
from task_manager.telemetry import MissionCancelled, Telemetry

logger = logging.getLogger(__name__)


class PollingWatcher(threading.Thread):
    """
    Base class for fixed-rate polling loops.

    Subclasses implement poll(), returning True once the watcher is done.
    The loop also ends when the token is cancelled or stop() is called.
    """

    def __init__(self, name: str, rate_hz: float, token: CancellationToken):
        super().__init__(name=name, daemon=True)
        if rate_hz <= 0.0:
            raise ValueError('rate_hz must be > 0')
        self._period = 1.0 / rate_hz
        self._token = token
        self._stop_requested = threading.Event()

    @property
    def period(self) -> float:
        return self._period

    def stop(self) -> None:
        """Ask the loop to exit at its next iteration."""
        self._stop_requested.set()

    def _should_run(self) -> bool:
        return not (self._token.cancelled or self._stop_requested.is_set())

    def run(self) -> None:
        logger.debug(f'{self.name}: started')
        try:
            self.setup()
            while self._should_run():
                if self.poll():
                    break
                self._token.wait(self._period)
        except MissionCancelled:
            pass
        except Exception:
            logger.exception(f'{self.name}: stopped on unexpected error')
        logger.debug(f'{self.name}: stopped')

    def setup(self) -> None:
        """Called once on the watcher thread before the first poll."""

    def poll(self) -> bool:
        raise NotImplementedError


class ObjectCountWatcher(PollingWatcher):
    """
    Reports objects newly added to a perception collection.

    The perception count is polled; only an increase past the number of
    objects already reported triggers a fetch. Fetched objects are sorted
    by id and everything past that number is handed to `on_new_objects`.
    """

    def __init__(
        self,
        perception: PerceptionClient,
        kind: ObjectKind,
        on_new_objects: Callable[[list[DetectedObject]], None],
        rate_hz: float,
        token: CancellationToken,
    ):
        super().__init__(f'watch_{kind.value}', rate_hz, token)
        self._perception = perception
        self._kind = kind
        self._on_new_objects = on_new_objects
        self._reported = 0

    @property
    def reported_count(self) -> int:
        return self._reported

    def poll(self) -> bool:
        try:
            count = self._perception.count_objects(self._kind)
            if count <= self._reported:
                return False
            objects = sorted(self._perception.get_all_objects(self._kind), key=lambda o: o.id)
        except ServiceCallError as e:
            logger.warning(f'{self.name}: perception query failed, retrying: {e}')
            return False

        new_objects = objects[self._reported:]
        if new_objects:
            self._reported += len(new_objects)
            self._on_new_objects(new_objects)
        return False


class EntrySearchWatcher(PollingWatcher):
    """Polls for the nearest aperture until one is found."""

    def __init__(
        self,
        perception: PerceptionClient,
        on_found: Callable[[DetectedObject], None],
        rate_hz: float,
        token: CancellationToken,
    ):
        super().__init__('look_for_entry', rate_hz, token)
        self._perception = perception
        self._on_found = on_found

    def poll(self) -> bool:
        try:
            aperture = self._perception.get_nearest_aperture()
        except ServiceCallError as e:
            logger.warning(f'{self.name}: perception query failed, retrying: {e}')
            return False
        if aperture is None:
            return False

        self._on_found(fix_aperture_convention(aperture))
        return True


class BatteryWatchdog(PollingWatcher):
    """Calls `on_low_voltage` once when the voltage drops to `min_voltage` or below."""

    def __init__(
        self,
        telemetry: Telemetry,
        min_voltage: float,
        on_low_voltage: Callable[[], None],
        rate_hz: float,
        token: CancellationToken,
    ):
        super().__init__('battery_watchdog', rate_hz, token)
        self._telemetry = telemetry
        self._min_voltage = min_voltage
        self._on_low_voltage = on_low_voltage

    def poll(self) -> bool:
        voltage = self._telemetry.wait_for_voltage(self._token)
        if voltage > self._min_voltage:
            return False

        logger.warning(f'Battery voltage {voltage:.2f} V is at or below {self._min_voltage:.2f} V')
        self._on_low_voltage()
        return True


class MissionTimer(PollingWatcher):
    """Calls `on_timeout` once the active mission time exceeds `timeout_minutes`."""

    def __init__(
        self,
        timeout_minutes: float,
        on_timeout: Callable[[], None],
        rate_hz: float,
        token: CancellationToken,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__('mission_timer', rate_hz, token)
        self._timeout_minutes = timeout_minutes
        self._on_timeout = on_timeout
        self._clock = clock
        self._start_time: Optional[float] = None
        self._last_logged_minute = 0

    def setup(self) -> None:
        self._start_time = self._clock()

    def minutes_passed(self) -> float:
        if self._start_time is None:
            return 0.0
        return (self._clock() - self._start_time) / 60.0

    def poll(self) -> bool:
        minutes = self.minutes_passed()
        whole_minutes = math.floor(minutes)
        if whole_minutes > self._last_logged_minute:
            self._last_logged_minute = whole_minutes
            logger.info(f'{whole_minutes} minute(s) has passed!')

        if minutes > self._timeout_minutes:
            logger.warning(f'Mission time limit of {self._timeout_minutes} minute(s) exceeded')
            self._on_timeout()
            return True
        return False


class TransitWatcher(PollingWatcher):
    """Feeds vehicle positions into the hole-transit detector until it reports a transit."""

    def __init__(
        self,
        telemetry: Telemetry,
        aperture_pose: Pose,
        arming_distance: float,
        completion_distance: float,
        on_transit: Callable[[], None],
        rate_hz: float,
        token: CancellationToken,
    ):
        super().__init__('watch_transit', rate_hz, token)
        self._telemetry = telemetry
        self._aperture_pose = aperture_pose
        self._arming_distance = arming_distance
        self._completion_distance = completion_distance
        self._on_transit = on_transit
        self._state: Optional[TransitDetectorState] = None

    @property
    def detector_state(self) -> Optional[TransitDetectorState]:
        return self._state

    def setup(self) -> None:
        self._state = hole_transit.begin(
            self._aperture_pose,
            self._arming_distance,
            self._completion_distance,
            self._telemetry.wait_for_position(self._token),
        )

    def poll(self) -> bool:
        previous_phase = self._state.phase
        self._state = hole_transit.update(
            self._state, self._telemetry.wait_for_position(self._token)
        )
        if self._state.phase != previous_phase:
            logger.debug(f'{self.name}: detector armed at {self._state.start_point}')

        if self._state.flew_through:
            logger.info('Vehicle flew through the aperture')
            self._on_transit()
            return True
        return False
