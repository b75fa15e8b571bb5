#!/usr/bin/env python3
"""
Pytest configuration and shared fixtures for task_manager tests.
"""
import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest
from scipy.spatial.transform import Rotation


# ==============================================================================
# Path Setup
# ==============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from task_manager.config import TaskManagerConfig  # noqa: E402
from task_manager.geometry import DetectedObject, Pose  # noqa: E402
from task_manager.interfaces import (  # noqa: E402
    MissionServices,
    MotionClient,
    NavigationClient,
    ObjectKind,
    PerceptionClient,
    ServiceCallError,
    StatusReporter,
    WallRegistry,
)
from task_manager.telemetry import Telemetry  # noqa: E402


# ==============================================================================
# Helpers
# ==============================================================================

def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll `predicate` until it is true or `timeout` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def perceived_aperture(aperture_id: int, position, width=1.0, height=1.2, depth=0.1) -> DetectedObject:
    """
    Aperture as perception reports it, chosen so that after
    fix_aperture_convention() its normal is world x.
    """
    orientation = tuple(Rotation.from_euler('y', -np.pi / 2).as_quat())
    return DetectedObject(
        id=aperture_id,
        pose=Pose(position=tuple(position), orientation=orientation),
        dimensions=(width, height, depth),
    )


class FakePerception(PerceptionClient):
    """In-memory perception collaborator."""

    def __init__(self):
        self._lock = threading.Lock()
        self.objects = {kind: [] for kind in ObjectKind}
        self.nearest_aperture = None
        self.fail = False

    def add(self, kind: ObjectKind, obj: DetectedObject) -> None:
        with self._lock:
            self.objects[kind].append(obj)

    def get_nearest_aperture(self):
        if self.fail:
            raise ServiceCallError('perception down')
        return self.nearest_aperture

    def count_objects(self, kind):
        if self.fail:
            raise ServiceCallError('perception down')
        with self._lock:
            return len(self.objects[kind])

    def get_all_objects(self, kind):
        if self.fail:
            raise ServiceCallError('perception down')
        with self._lock:
            return list(self.objects[kind])


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def config():
    """Config with fast cadences so threaded tests finish quickly."""
    return TaskManagerConfig(
        battery_check_hz=50.0,
        timer_check_hz=50.0,
        transit_check_hz=50.0,
        object_poll_hz=50.0,
        entry_search_hz=50.0,
        line_follow_hz=50.0,
        cube_hunt={'cubes_count': 3},
    )


@pytest.fixture
def telemetry():
    telemetry = Telemetry()
    telemetry.update_pose((0.0, 0.0, 1.5))
    telemetry.update_voltage(12.0)
    return telemetry


@pytest.fixture
def perception():
    return FakePerception()


@pytest.fixture
def services(perception, telemetry):
    return MissionServices(
        perception=perception,
        motion=MagicMock(spec=MotionClient),
        navigation=MagicMock(spec=NavigationClient),
        walls=MagicMock(spec=WallRegistry),
        telemetry=telemetry,
        reporter=MagicMock(spec=StatusReporter),
    )


@pytest.fixture
def make_mission(config, services):
    """Factory for missions that are shut down after the test."""
    missions = []

    def factory(mission_class, **overrides):
        mission = mission_class(overrides.get('config', config), services)
        missions.append(mission)
        return mission

    yield factory
    for mission in missions:
        mission.shutdown(timeout=1.0)
