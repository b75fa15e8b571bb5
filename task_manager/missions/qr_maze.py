"""
qr_maze.py - Mission 2: traverse rooms guided by QR codes

Each room has QR codes on the walls next to its apertures and one painted
on the floor. The floor code names the aperture to take: the vehicle
flies through the aperture whose wall code carries the same content.
A floor code equal to the concatenation of all passed room labels marks
the landing point.

    WaitingForCommand --Start--> Exploring
    Exploring --QrFound/HoleFound--> Exploring | FlyingIntoHole | FlyingToLandingPoint
    FlyingIntoHole --FlewThroughHole--> Exploring
    FlyingToLandingPoint --FlewNearLandingPoint--> Landing
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Sequence

from task_manager.events import Event, Failure, Start
from task_manager.geometry import (
    DetectedObject,
    Pose,
    entry_point,
    fix_aperture_convention,
    orientation_toward_point,
)
from task_manager.interfaces import ObjectKind
from task_manager.missions.base import Mission
from task_manager.missions.correlation import CorrelationStore, Qr
from task_manager.state_machine import Effect, Transition, TransitionTable
from task_manager.watchers import ObjectCountWatcher, TransitWatcher

logger = logging.getLogger(__name__)


class QrMazeState(Enum):
    WAITING_FOR_COMMAND = auto()
    EXPLORING = auto()
    FLYING_INTO_HOLE = auto()
    FLYING_TO_LANDING_POINT = auto()
    LANDING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class QrFound(Event):
    """A QR code not seen before in room `room`, recorded at `index`."""
    qr: Qr
    index: int
    room: int = 0


@dataclass(frozen=True)
class HoleFound(Event):
    """A new aperture reported by perception."""
    hole: DetectedObject


@dataclass(frozen=True)
class FlewThroughHole(Event):
    """The vehicle has passed the aperture associated with QR `qr_index`."""
    qr_index: int


@dataclass(frozen=True)
class FlewNearLandingPoint(Event):
    """The landing point goal has completed."""


class Action(Enum):
    WATCH_APERTURES = auto()
    EXPLORE = auto()
    FLY_INTO_HOLE = auto()
    CONTINUE_EXPLORING = auto()
    FLY_TO_LANDING_POINT = auto()
    LAND = auto()


def _fly_into(hole: DetectedObject, qr_index: int) -> Transition:
    return Transition(QrMazeState.FLYING_INTO_HOLE, (Effect(Action.FLY_INTO_HOLE, (hole, qr_index)),))


def on_qr_found(store: CorrelationStore, event: QrFound) -> Transition:
    """Decide where to go after a new QR code while exploring."""
    qr = event.qr
    if event.room != store.room:
        logger.debug(f'Ignoring QR #{event.index} from room {event.room}, already left')
        return Transition(QrMazeState.EXPLORING)
    if qr.is_on_floor:
        target = store.aperture_with_content(qr.content)
        if target is not None:
            hole, wall_qr_index = target
            return _fly_into(hole, wall_qr_index)
        if store.match_qr_with_passed_rooms(event.index, event.room) is not None:
            return Transition(
                QrMazeState.FLYING_TO_LANDING_POINT,
                (Effect(Action.FLY_TO_LANDING_POINT, (qr.position,)),),
            )
        return Transition(QrMazeState.EXPLORING)

    if store.floor_qr_with_content(qr.content) is not None:
        hole = store.aperture_for_qr(event.index, event.room)
        if hole is not None:
            return _fly_into(hole, event.index)
    return Transition(QrMazeState.EXPLORING)


def on_hole_found(store: CorrelationStore, event: HoleFound) -> Transition:
    """Decide whether a new aperture is the one the floor code asks for."""
    qr_index = store.qr_for_aperture(event.hole.id)
    if qr_index is not None and store.floor_match_for_aperture(event.hole.id) is not None:
        return _fly_into(event.hole, qr_index)
    return Transition(QrMazeState.EXPLORING)


def build_table(store: CorrelationStore) -> TransitionTable:
    """Transition table of mission 2; branching rules read `store`."""
    S = QrMazeState
    land = Transition(S.LANDING, (Effect(Action.LAND),))
    return TransitionTable({
        (S.WAITING_FOR_COMMAND, Start): Transition(S.EXPLORING, (
            Effect(Action.WATCH_APERTURES),
            Effect(Action.EXPLORE),
        )),
        (S.WAITING_FOR_COMMAND, QrFound): S.WAITING_FOR_COMMAND,
        (S.WAITING_FOR_COMMAND, HoleFound): S.WAITING_FOR_COMMAND,
        (S.EXPLORING, QrFound): lambda event: on_qr_found(store, event),
        (S.EXPLORING, HoleFound): lambda event: on_hole_found(store, event),
        (S.FLYING_INTO_HOLE, QrFound): S.FLYING_INTO_HOLE,
        (S.FLYING_INTO_HOLE, HoleFound): S.FLYING_INTO_HOLE,
        (S.FLYING_INTO_HOLE, FlewThroughHole): lambda event: Transition(
            S.EXPLORING, (Effect(Action.CONTINUE_EXPLORING, (event.qr_index,)),)
        ),
        (S.FLYING_TO_LANDING_POINT, QrFound): S.FLYING_TO_LANDING_POINT,
        (S.FLYING_TO_LANDING_POINT, HoleFound): S.FLYING_TO_LANDING_POINT,
        (S.FLYING_TO_LANDING_POINT, FlewNearLandingPoint): land,
        (S.LANDING, QrFound): S.LANDING,
        (S.LANDING, HoleFound): S.LANDING,

        (S.EXPLORING, Failure): land,
        (S.FLYING_INTO_HOLE, Failure): land,
        (S.FLYING_TO_LANDING_POINT, Failure): S.FLYING_TO_LANDING_POINT,
        (S.LANDING, Failure): S.LANDING,
    })


class QrMazeMission(Mission):
    """Mission 2: follow floor QR codes from room to room, then land."""

    NAME = 'qr_maze'
    INITIAL_STATE = QrMazeState.WAITING_FOR_COMMAND
    ERROR_STATE = QrMazeState.ERROR
    FAILSAFE_ACTIONS = frozenset({Action.LAND})
    STATUS_TEXT = {
        QrMazeState.WAITING_FOR_COMMAND: 'Drone is waiting for commands...',
        QrMazeState.EXPLORING: 'Drone is exploring...',
        QrMazeState.FLYING_INTO_HOLE: 'Drone is flying into the hole...',
        QrMazeState.FLYING_TO_LANDING_POINT: 'Drone is flying to landing point...',
        QrMazeState.LANDING: 'Drone is landing...',
        QrMazeState.ERROR: 'Drone state is invalid due to wrong transition!',
    }

    def __init__(self, config, services, token=None):
        self.store = CorrelationStore(config.qr_maze)
        super().__init__(config, services, token)

    def build_table(self) -> TransitionTable:
        return build_table(self.store)

    def effect_handlers(self):
        return {
            Action.WATCH_APERTURES: self._watch_apertures,
            Action.EXPLORE: self._explore,
            Action.FLY_INTO_HOLE: self._fly_into_hole,
            Action.CONTINUE_EXPLORING: self._continue_exploring,
            Action.FLY_TO_LANDING_POINT: self._fly_to_landing_point,
            Action.LAND: self._land,
        }

    def handle_qr_codes(self, observations: Iterable[tuple[Sequence[float], str]]) -> None:
        """
        Feed QR detections (map-frame position, content) from the vision stream.

        Ignored before Start and after the mission is cancelled.
        """
        if self.token.cancelled or self.state == QrMazeState.WAITING_FOR_COMMAND:
            return
        for position, content in observations:
            qr = Qr.observed(position, content, self.config.qr_maze.max_floor_z)
            recorded = self.store.detect_in_room(qr)
            if recorded is not None:
                index, room = recorded
                self.apply(QrFound(qr, index, room))

    def _watch_apertures(self):
        self.start_watcher(ObjectCountWatcher(
            self.services.perception,
            ObjectKind.HOLES,
            self._on_new_apertures,
            self.config.object_poll_hz,
            self.token,
        ))

    def _on_new_apertures(self, apertures: list[DetectedObject]):
        for raw in apertures:
            aperture = fix_aperture_convention(raw)
            if self.store.add_aperture(aperture):
                self.apply(HoleFound(aperture))

    def _spin_then_explore(self) -> None:
        motion = self.services.motion
        for altitude in (self.config.low_altitude, self.config.operating_altitude):
            motion.spin_and_wait(1, altitude, self.config.angular_velocity)
            if not self.is_in(QrMazeState.EXPLORING):
                return
        motion.start_exploration()

    def _explore(self):
        self.services.motion.take_off(self.config.operating_altitude)
        if not self.is_in(QrMazeState.EXPLORING):
            return
        self._spin_then_explore()

    def _continue_exploring(self, qr_index: int):
        self.store.record_passed_room(qr_index)
        self.services.walls.set_walls_enabled(True)
        self._spin_then_explore()

    def _fly_into_hole(self, hole: DetectedObject, qr_index: int):
        navigation = self.services.navigation
        navigation.cancel_all_goals()
        self.services.motion.pause_exploration()
        vehicle_position = self.services.telemetry.wait_for_position(self.token)
        if not self.is_in(QrMazeState.FLYING_INTO_HOLE):
            return
        navigation.send_goal(entry_point(hole, vehicle_position, self.config.entry_standoff_distance))

        def on_transit():
            self.services.walls.add_wall(hole)
            self.apply(FlewThroughHole(qr_index))

        self.start_watcher(TransitWatcher(
            self.services.telemetry,
            hole.pose,
            self.config.transit_arming_distance,
            self.config.transit_completion_distance,
            on_transit,
            self.config.transit_check_hz,
            self.token,
        ))

    def _fly_to_landing_point(self, landing_point):
        self.services.navigation.cancel_all_goals()
        self.services.navigation.send_goal(
            Pose(position=landing_point, orientation=orientation_toward_point(landing_point)),
            on_done=lambda: self.apply(FlewNearLandingPoint()),
        )

    def _land(self):
        self.services.navigation.cancel_all_goals()
        self.services.motion.land()
