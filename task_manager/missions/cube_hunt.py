"""
cube_hunt.py - Mission 1: enter a building through an aperture and find cubes

    WaitingForCommand --Start--> LookingForEntry --EntryFound--> FlyingInside
    FlyingInside --FlewInsideBuilding--> Exploring --FoundAllCubes--> ReturningToStartPoint
    ReturningToStartPoint --FlewNearStartPoint--> Landing

Failures land the vehicle while it is still outside and bring it back to
the start point once it has entered the building.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto

from task_manager.events import Event, Failure, Start
from task_manager.geometry import DetectedObject, Pose, entry_point
from task_manager.interfaces import ObjectKind
from task_manager.missions.base import Mission
from task_manager.state_machine import Effect, Transition, TransitionTable
from task_manager.watchers import EntrySearchWatcher, ObjectCountWatcher, TransitWatcher

logger = logging.getLogger(__name__)


class CubeHuntState(Enum):
    WAITING_FOR_COMMAND = auto()
    LOOKING_FOR_ENTRY = auto()
    FLYING_INSIDE = auto()
    EXPLORING = auto()
    RETURNING_TO_START_POINT = auto()
    LANDING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class EntryFound(Event):
    """The first aperture of the building has been found."""
    entry: DetectedObject


@dataclass(frozen=True)
class FlewInsideBuilding(Event):
    """The vehicle has flown through the entry aperture."""


@dataclass(frozen=True)
class FoundAllCubes(Event):
    """The configured number of cubes has been detected."""


@dataclass(frozen=True)
class FlewNearStartPoint(Event):
    """The return-to-start goal has completed."""


class Action(Enum):
    WATCH_CUBES = auto()
    SEARCH_ENTRY = auto()
    TAKE_OFF = auto()
    FLY_INTO_ENTRY = auto()
    EXPLORE = auto()
    PAUSE_EXPLORATION = auto()
    RETURN_TO_START = auto()
    LAND = auto()


def build_table() -> TransitionTable:
    """Transition table of mission 1."""
    S = CubeHuntState
    return TransitionTable({
        (S.WAITING_FOR_COMMAND, Start): Transition(S.LOOKING_FOR_ENTRY, (
            Effect(Action.WATCH_CUBES),
            Effect(Action.SEARCH_ENTRY),
            Effect(Action.TAKE_OFF),
        )),
        (S.LOOKING_FOR_ENTRY, EntryFound): lambda event: Transition(
            S.FLYING_INSIDE, (Effect(Action.FLY_INTO_ENTRY, (event.entry,)),)
        ),
        (S.FLYING_INSIDE, FlewInsideBuilding): Transition(S.EXPLORING, (Effect(Action.EXPLORE),)),
        (S.EXPLORING, FoundAllCubes): Transition(S.RETURNING_TO_START_POINT, (
            Effect(Action.PAUSE_EXPLORATION),
            Effect(Action.RETURN_TO_START),
        )),
        (S.RETURNING_TO_START_POINT, FlewNearStartPoint): Transition(S.LANDING, (Effect(Action.LAND),)),

        (S.WAITING_FOR_COMMAND, Failure): S.WAITING_FOR_COMMAND,
        (S.LOOKING_FOR_ENTRY, Failure): Transition(S.LANDING, (Effect(Action.LAND),)),
        (S.FLYING_INSIDE, Failure): Transition(S.RETURNING_TO_START_POINT, (
            Effect(Action.RETURN_TO_START),
        )),
        (S.EXPLORING, Failure): Transition(S.RETURNING_TO_START_POINT, (
            Effect(Action.PAUSE_EXPLORATION),
            Effect(Action.RETURN_TO_START),
        )),
        (S.RETURNING_TO_START_POINT, Failure): S.RETURNING_TO_START_POINT,
        (S.LANDING, Failure): S.LANDING,
    })


class CubeHuntMission(Mission):
    """Mission 1: find `cube_hunt.cubes_count` cubes inside a building and come back."""

    NAME = 'cube_hunt'
    INITIAL_STATE = CubeHuntState.WAITING_FOR_COMMAND
    ERROR_STATE = CubeHuntState.ERROR
    FAILSAFE_ACTIONS = frozenset({Action.PAUSE_EXPLORATION, Action.RETURN_TO_START, Action.LAND})
    STATUS_TEXT = {
        CubeHuntState.WAITING_FOR_COMMAND: 'Drone is waiting for commands...',
        CubeHuntState.LOOKING_FOR_ENTRY: 'Drone is looking for entry...',
        CubeHuntState.FLYING_INSIDE: 'Drone is flying inside the building...',
        CubeHuntState.EXPLORING: 'Drone is exploring...',
        CubeHuntState.RETURNING_TO_START_POINT: 'Drone is returning to start point...',
        CubeHuntState.LANDING: 'Drone is landing...',
        CubeHuntState.ERROR: 'Drone state is invalid due to wrong transition!',
    }

    def __init__(self, config, services, token=None):
        self._cubes_lock = threading.Lock()
        self._cubes_found = 0
        self._all_cubes_reported = False
        super().__init__(config, services, token)

    def build_table(self) -> TransitionTable:
        return build_table()

    def effect_handlers(self):
        return {
            Action.WATCH_CUBES: self._watch_cubes,
            Action.SEARCH_ENTRY: self._search_entry,
            Action.TAKE_OFF: self._take_off,
            Action.FLY_INTO_ENTRY: self._fly_into_entry,
            Action.EXPLORE: self._explore,
            Action.PAUSE_EXPLORATION: self.services.motion.pause_exploration,
            Action.RETURN_TO_START: self._return_to_start,
            Action.LAND: self.services.motion.land,
        }

    @property
    def cubes_found(self) -> int:
        with self._cubes_lock:
            return self._cubes_found

    def _watch_cubes(self):
        self.start_watcher(ObjectCountWatcher(
            self.services.perception,
            ObjectKind.CUBES,
            self._on_new_cubes,
            self.config.object_poll_hz,
            self.token,
        ))

    def _on_new_cubes(self, cubes: list[DetectedObject]):
        for cube in cubes:
            logger.info(f'Cube {cube.id} detected at {cube.pose.position}')
            self.services.reporter.publish_cube(cube.pose.position)
        with self._cubes_lock:
            self._cubes_found += len(cubes)
        self._check_all_cubes_found()

    def _check_all_cubes_found(self):
        """Raise FoundAllCubes once, when enough cubes are known while exploring."""
        with self._cubes_lock:
            if self._all_cubes_reported or self._cubes_found < self.config.cube_hunt.cubes_count:
                return
            if not self.is_in(CubeHuntState.EXPLORING):
                return
            self._all_cubes_reported = True
        self.apply(FoundAllCubes())

    def _search_entry(self):
        def on_found(entry: DetectedObject):
            self.services.motion.stop_spinning()
            self.apply(EntryFound(entry))

        self.start_watcher(EntrySearchWatcher(
            self.services.perception, on_found, self.config.entry_search_hz, self.token,
        ))

    def _take_off(self):
        self.services.motion.take_off(self.config.operating_altitude)

    def _fly_into_entry(self, entry: DetectedObject):
        navigation = self.services.navigation
        navigation.cancel_all_goals()
        vehicle_position = self.services.telemetry.wait_for_position(self.token)
        if not self.is_in(CubeHuntState.FLYING_INSIDE):
            return
        navigation.send_goal(entry_point(entry, vehicle_position, self.config.entry_standoff_distance))

        def on_transit():
            self.services.walls.add_wall(entry)
            self.apply(FlewInsideBuilding())

        self.start_watcher(TransitWatcher(
            self.services.telemetry,
            entry.pose,
            self.config.transit_arming_distance,
            self.config.transit_completion_distance,
            on_transit,
            self.config.transit_check_hz,
            self.token,
        ))

    def _explore(self):
        motion = self.services.motion
        self.services.walls.set_walls_enabled(True)
        motion.spin_and_wait(1, self.config.operating_altitude, self.config.angular_velocity)
        if not self.is_in(CubeHuntState.EXPLORING):
            return
        motion.start_exploration()
        # Cubes seen before entering the building count as well
        self._check_all_cubes_found()

    def _return_to_start(self):
        self.services.walls.set_walls_enabled(False)
        self.services.navigation.cancel_all_goals()
        self.services.motion.stop_spinning()
        self.services.navigation.send_goal(
            Pose(position=(0.0, 0.0, 0.0)),
            on_done=lambda: self.apply(FlewNearStartPoint()),
        )
