"""
line_following.py - Mission 3: follow a line painted on the ground

Line points from the line detector are accumulated into a ground path;
a follower streams position setpoints along it.

    WaitingForCommand --Start--> FollowingLine
"""

import logging
import threading
from enum import Enum, auto
from typing import Iterable, Optional, Sequence

from task_manager.cancellation import CancellationToken
from task_manager.events import Start
from task_manager.geometry import distance, has_similar_orientation, yaw_between_points
from task_manager.interfaces import MotionClient
from task_manager.missions.base import Mission
from task_manager.state_machine import Effect, Transition, TransitionTable
from task_manager.telemetry import Telemetry
from task_manager.watchers import PollingWatcher

logger = logging.getLogger(__name__)

Point = tuple[float, float, float]


def _on_ground(point: Sequence[float]) -> Point:
    return (float(point[0]), float(point[1]), 0.0)


class FollowingState(Enum):
    WAITING_FOR_COMMAND = auto()
    FOLLOWING_LINE = auto()
    ERROR = auto()


class Action(Enum):
    FOLLOW_LINE = auto()


def build_table() -> TransitionTable:
    """Transition table of mission 3."""
    return TransitionTable({
        (FollowingState.WAITING_FOR_COMMAND, Start): Transition(
            FollowingState.FOLLOWING_LINE, (Effect(Action.FOLLOW_LINE),)
        ),
    })


class LinePath:
    """
    Ground-projected path built from line detector points.

    A point is appended when it continues the direction of the last two
    path points, lies within `max_point_distance` of the vehicle and is
    not within `duplicate_distance` of a point already on the path. The
    first two points are ordered so the one nearer the vehicle comes first.
    """

    def __init__(self, max_point_distance: float = 3.5, duplicate_distance: float = 0.5):
        self._max_point_distance = max_point_distance
        self._duplicate_distance = duplicate_distance
        self._points: list[Point] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    @property
    def points(self) -> list[Point]:
        with self._lock:
            return self._points.copy()

    def point(self, index: int) -> Optional[Point]:
        with self._lock:
            if 0 <= index < len(self._points):
                return self._points[index]
        return None

    def _has_point(self, point: Point) -> bool:
        return any(distance(known, point) < self._duplicate_distance for known in self._points)

    def _accept(self, point: Point, vehicle: Point) -> None:
        if not self._points:
            self._points.append(point)
            return
        if len(self._points) == 1:
            if distance(vehicle, self._points[0]) < distance(vehicle, point):
                self._points.append(point)
            else:
                self._points.insert(0, point)
            return
        if (has_similar_orientation(self._points[-2], self._points[-1], point)
                and distance(vehicle, point) < self._max_point_distance
                and not self._has_point(point)):
            self._points.append(point)

    def extend(self, points: Iterable[Sequence[float]], vehicle_position: Sequence[float]) -> int:
        """Offer new detector points; returns how many were added."""
        vehicle = _on_ground(vehicle_position)
        with self._lock:
            before = len(self._points)
            for point in points:
                self._accept(_on_ground(point), vehicle)
            return len(self._points) - before


class LineFollower(PollingWatcher):
    """Streams a position setpoint toward the current path point, advancing when close."""

    def __init__(
        self,
        path: LinePath,
        telemetry: Telemetry,
        motion: MotionClient,
        altitude: float,
        tolerance: float,
        rate_hz: float,
        token: CancellationToken,
    ):
        super().__init__('follow_line', rate_hz, token)
        self._path = path
        self._telemetry = telemetry
        self._motion = motion
        self._altitude = altitude
        self._tolerance = tolerance
        self._index = 0

    @property
    def target_index(self) -> int:
        return self._index

    def poll(self) -> bool:
        target = self._path.point(self._index)
        if target is None:
            return False

        vehicle = _on_ground(self._telemetry.wait_for_position(self._token))
        self._motion.send_position_target(
            (target[0], target[1], self._altitude),
            yaw_between_points(vehicle, target),
        )
        if distance(vehicle, target) <= self._tolerance:
            self._index += 1
            logger.debug(f'Line point {self._index - 1} reached')
        return False


class LineFollowingMission(Mission):
    """Mission 3: follow the painted line. Runs without watchdogs."""

    NAME = 'line_following'
    INITIAL_STATE = FollowingState.WAITING_FOR_COMMAND
    ERROR_STATE = FollowingState.ERROR
    USES_WATCHDOGS = False
    STATUS_TEXT = {
        FollowingState.WAITING_FOR_COMMAND: 'Drone is waiting for commands...',
        FollowingState.FOLLOWING_LINE: 'Drone is following line...',
        FollowingState.ERROR: 'Drone state is invalid due to wrong transition!',
    }

    def __init__(self, config, services, token=None):
        self.path = LinePath(config.line_max_point_distance, config.line_duplicate_point_distance)
        super().__init__(config, services, token)

    def build_table(self) -> TransitionTable:
        return build_table()

    def effect_handlers(self):
        return {Action.FOLLOW_LINE: self._follow_line}

    def handle_line_points(self, points: Iterable[Sequence[float]]) -> None:
        """Feed map-frame points from the line detector and publish the updated path."""
        if self.token.cancelled or self.state != FollowingState.FOLLOWING_LINE:
            return
        vehicle_position = self.services.telemetry.wait_for_position(self.token)
        added = self.path.extend(points, vehicle_position)
        if added:
            logger.debug(f'{added} line point(s) added, path has {len(self.path)}')
        self.services.reporter.publish_path(self.path.points)

    def _follow_line(self):
        self.services.motion.take_off(self.config.operating_altitude)
        self.start_watcher(LineFollower(
            self.path,
            self.services.telemetry,
            self.services.motion,
            self.config.line_following_altitude,
            self.config.line_target_tolerance,
            self.config.line_follow_hz,
            self.token,
        ))
