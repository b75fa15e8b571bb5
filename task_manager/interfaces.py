"""
interfaces.py - Contracts with external collaborators

The missions talk to the outside world only through these interfaces:
perception (object/aperture queries), motion (takeoff, land, spin,
exploration, raw setpoints), navigation (goal poses), virtual walls and
status reporting. The ROS 2 implementations live in
task_manager.service_clients and task_manager.task_manager_node; tests
provide in-memory fakes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from task_manager.geometry import DetectedObject, Pose
from task_manager.telemetry import Telemetry

logger = logging.getLogger(__name__)


class ServiceCallError(RuntimeError):
    """A request to an external service failed or returned no result."""


class ObjectKind(Enum):
    """Object collections maintained by the perception collaborator."""
    CUBES = 'cubes'
    HOLES = 'holes'


class NodeStatus(Enum):
    """Lifecycle status published for the nodes monitor."""
    INITIALIZED = 'initialized'
    STARTED = 'started'


class PerceptionClient(ABC):
    """Queries against the perception position collectors."""

    @abstractmethod
    def get_nearest_aperture(self) -> Optional[DetectedObject]:
        """Aperture nearest to the vehicle in perception convention, or None if none yet."""

    @abstractmethod
    def count_objects(self, kind: ObjectKind) -> int:
        """Number of objects of `kind` detected so far (monotonic)."""

    @abstractmethod
    def get_all_objects(self, kind: ObjectKind) -> list[DetectedObject]:
        """All objects of `kind` detected so far."""


class MotionClient(ABC):
    """Low-level flight commands."""

    @abstractmethod
    def take_off(self, altitude: float) -> None:
        """Climb to `altitude`; blocks until reached."""

    @abstractmethod
    def land(self) -> None:
        """Land at the current position; blocks until landed."""

    @abstractmethod
    def spin(self, laps: int, altitude: float, angular_velocity: float) -> None:
        """Start spinning around z; returns immediately."""

    @abstractmethod
    def spin_and_wait(self, laps: int, altitude: float, angular_velocity: float) -> None:
        """Spin around z; blocks until the spin is finished."""

    @abstractmethod
    def stop_spinning(self) -> None:
        """Abort an ongoing spin."""

    @abstractmethod
    def start_exploration(self) -> None:
        """Hand control to the autonomous exploration planner."""

    @abstractmethod
    def pause_exploration(self) -> None:
        """Take control back from the exploration planner."""

    @abstractmethod
    def send_position_target(self, position: Sequence[float], yaw: float) -> None:
        """Stream a raw position setpoint in the map frame."""


class NavigationClient(ABC):
    """Goal channel of the path planner."""

    @abstractmethod
    def send_goal(self, pose: Pose, on_done: Optional[Callable[[], None]] = None) -> None:
        """Send a goal pose; `on_done` is called once the goal completes."""

    @abstractmethod
    def cancel_all_goals(self) -> None:
        """Cancel every goal; blocks briefly so the cancel propagates."""


class WallRegistry(ABC):
    """Virtual no-fly walls shared by the planners."""

    @abstractmethod
    def add_wall(self, aperture: DetectedObject) -> None:
        """Register `aperture` (map frame) as a permanent wall."""

    @abstractmethod
    def set_walls_enabled(self, enabled: bool) -> None:
        """Enable or disable all registered walls."""


class StatusReporter:
    """
    Publishes mission progress to operators.

    Missions log every state change and event themselves; the base
    implementation publishes nothing. The ROS node overrides these to
    publish on its status, events, cube and path topics.
    """

    def publish_status(self, text: str, is_error: bool = False) -> None:
        pass

    def publish_event(self, name: str) -> None:
        pass

    def publish_cube(self, position: Sequence[float]) -> None:
        pass

    def publish_path(self, points: Sequence[Sequence[float]]) -> None:
        pass

    def publish_node_status(self, status: NodeStatus) -> None:
        logger.debug(f'Node status: {status.value}')


@dataclass
class MissionServices:
    """Bundle of collaborators handed to every mission."""
    perception: PerceptionClient
    motion: MotionClient
    navigation: NavigationClient
    walls: WallRegistry
    telemetry: Telemetry
    reporter: StatusReporter
