"""
telemetry.py - Latest vehicle pose and battery voltage

The ROS node feeds the cache from its subscriptions; watchers and
mission actions read from it. Blocking reads wait for the first sample
and give up when the mission token is cancelled.
"""

import logging
import threading
from typing import Optional, Sequence

from task_manager.cancellation import CancellationToken
from task_manager.geometry import IDENTITY_QUATERNION, Pose

logger = logging.getLogger(__name__)


class MissionCancelled(Exception):
    """Raised by blocking reads when the mission token is cancelled."""


class Telemetry:
    """
    Thread-safe cache of the latest telemetry samples.

    Thread Safety:
        A single condition variable guards both samples; writers notify
        all waiters.
    """

    # Upper bound on a single condition wait so cancellation is noticed
    POLL_INTERVAL_SEC = 0.1

    def __init__(self):
        self._condition = threading.Condition()
        self._pose: Optional[Pose] = None
        self._voltage: Optional[float] = None

    def update_pose(
        self,
        position: Sequence[float],
        orientation: Sequence[float] = IDENTITY_QUATERNION,
    ) -> None:
        pose = Pose(
            position=tuple(float(v) for v in position),
            orientation=tuple(float(v) for v in orientation),
        )
        with self._condition:
            self._pose = pose
            self._condition.notify_all()

    def update_voltage(self, voltage: float) -> None:
        with self._condition:
            self._voltage = float(voltage)
            self._condition.notify_all()

    @property
    def pose(self) -> Optional[Pose]:
        """Latest pose, or None before the first sample."""
        with self._condition:
            return self._pose

    @property
    def voltage(self) -> Optional[float]:
        with self._condition:
            return self._voltage

    def wait_for_pose(self, token: CancellationToken) -> Pose:
        """Block until a pose is known; raises MissionCancelled on cancellation."""
        return self._wait_for(lambda: self._pose, token, 'pose')

    def wait_for_position(self, token: CancellationToken) -> tuple[float, float, float]:
        return self.wait_for_pose(token).position

    def wait_for_voltage(self, token: CancellationToken) -> float:
        """Block until a voltage is known; raises MissionCancelled on cancellation."""
        return self._wait_for(lambda: self._voltage, token, 'voltage')

    def _wait_for(self, read, token: CancellationToken, what: str):
        with self._condition:
            value = read()
            if value is None:
                logger.debug(f'Waiting for first {what} sample')
            while value is None:
                if token.cancelled:
                    raise MissionCancelled(f'cancelled while waiting for {what}')
                self._condition.wait(self.POLL_INTERVAL_SEC)
                value = read()
            return value
