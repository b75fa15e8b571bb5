#!/usr/bin/env python3
"""
test_task_manager_node.py - Smoke tests for the ROS 2 node

Skipped when rclpy is not available (plain Python environments).
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

rclpy = pytest.importorskip('rclpy')

from task_manager.config import TaskManagerConfig  # noqa: E402
from task_manager.service_clients import pose_from_msg, pose_to_msg  # noqa: E402
from task_manager.geometry import Pose  # noqa: E402


@pytest.fixture
def node():
    from task_manager.task_manager_node import TaskManagerNode
    rclpy.init()
    node = TaskManagerNode()
    yield node
    node.shutdown()
    node.destroy_node()
    rclpy.shutdown()


class TestStartup:
    """Test what the node publishes while starting."""

    def test_no_event_published_at_startup(self, monkeypatch):
        from task_manager import task_manager_node
        publish_event = MagicMock()
        monkeypatch.setattr(task_manager_node.RosStatusReporter, 'publish_event', publish_event)
        rclpy.init()
        try:
            node = task_manager_node.TaskManagerNode()
            publish_event.assert_not_called()
            node.shutdown()
            node.destroy_node()
        finally:
            rclpy.shutdown()


class TestParameters:
    """Test parameter declaration."""

    def test_defaults_loaded(self, node):
        assert node.config == TaskManagerConfig()
        assert node.get_parameter('cube_hunt.cubes_count').value == 5


class TestStartService:
    """Test the start service callback."""

    def test_invalid_task(self, node):
        response = node._start_callback(SimpleNamespace(task=9), SimpleNamespace())
        assert response.success is False
        assert 'Wrong task number' in response.message
        assert node.task_manager.mission is None


class TestConversions:
    """Test message conversion helpers."""

    def test_pose_round_trip(self):
        pose = Pose((1.0, 2.0, 3.0), (0.0, 0.0, 0.0, 1.0))
        assert pose_from_msg(pose_to_msg(pose)) == pose
