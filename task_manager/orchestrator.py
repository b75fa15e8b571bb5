"""
orchestrator.py - Mission selection and lifecycle

TaskManager is the single entry point used by the ROS node: it validates
the mission selector, builds the mission, starts its watchdogs and feeds
it the Start event. A mission is started at most once per TaskManager.
"""

import logging
import threading
from enum import IntEnum
from typing import Iterable, Optional, Sequence

from task_manager.config import TaskManagerConfig
from task_manager.events import Start
from task_manager.interfaces import MissionServices, NodeStatus
from task_manager.missions import CubeHuntMission, LineFollowingMission, Mission, QrMazeMission

logger = logging.getLogger(__name__)


class MissionType(IntEnum):
    CUBE_HUNT = 1
    QR_MAZE = 2
    LINE_FOLLOWING = 3


MISSION_CLASSES = {
    MissionType.CUBE_HUNT: CubeHuntMission,
    MissionType.QR_MAZE: QrMazeMission,
    MissionType.LINE_FOLLOWING: LineFollowingMission,
}


class MissionStartError(ValueError):
    """The mission selector is invalid or a mission is already running."""


def parse_mission_type(selector) -> MissionType:
    """Mission type for an integer selector or a string of ASCII digits."""
    value = selector
    if isinstance(value, str) and value.isascii() and value.isdigit():
        value = int(value)
    if isinstance(value, int) and not isinstance(value, bool):
        if value in {mission_type.value for mission_type in MissionType}:
            return MissionType(value)
    raise MissionStartError(f'Wrong task number is specified: {selector!r}')


class TaskManager:
    """
    Starts and owns the mission selected by the operator.

    Attributes:
        mission: The running mission, or None before start_mission()
    """

    def __init__(self, config: TaskManagerConfig, services: MissionServices):
        self.config = config
        self.services = services
        self._lock = threading.Lock()
        self._mission: Optional[Mission] = None

    @property
    def mission(self) -> Optional[Mission]:
        with self._lock:
            return self._mission

    def start_mission(self, selector) -> Mission:
        """
        Start mission `selector` (1, 2 or 3).

        Raises:
            MissionStartError: Invalid selector, or a mission was already started
        """
        mission_type = parse_mission_type(selector)
        with self._lock:
            if self._mission is not None:
                raise MissionStartError(
                    f'Mission {self._mission.NAME} is already started'
                )
            mission = MISSION_CLASSES[mission_type](self.config, self.services)
            self._mission = mission

        logger.info(f'Starting mission {int(mission_type)} ({mission.NAME})')
        if mission.USES_WATCHDOGS:
            mission.start_watchdogs()
        mission.apply(Start())
        self.services.reporter.publish_node_status(NodeStatus.STARTED)
        return mission

    def handle_qr_codes(self, observations: Iterable[tuple[Sequence[float], str]]) -> None:
        mission = self.mission
        if isinstance(mission, QrMazeMission):
            mission.handle_qr_codes(observations)

    def handle_line_points(self, points: Iterable[Sequence[float]]) -> None:
        mission = self.mission
        if isinstance(mission, LineFollowingMission):
            mission.handle_line_points(points)

    def shutdown(self, timeout: float = 2.0) -> None:
        """Cancel the running mission and join its watchers."""
        mission = self.mission
        if mission is not None:
            logger.info(f'Shutting down mission {mission.NAME}')
            mission.shutdown(timeout)
