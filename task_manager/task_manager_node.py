#!/usr/bin/env python3
"""
task_manager_node.py - ROS 2 node running the autonomous missions

Waits for a start request selecting mission 1 (cube hunt), 2 (QR maze) or
3 (line following), then runs it through TaskManager. Telemetry topics
feed the shared Telemetry cache; mission progress is published for
operators.

Services:
    task_manager/start (task_manager_msgs/Start) - Start mission `task`

Subscribers:
    /mavros/local_position/pose (PoseStamped) - Vehicle pose in the map frame
    /mavros/battery (BatteryState) - Battery voltage
    vision/qr_codes (qr_detector_msgs/QRCodeArray) - QR detections, mission 2
    /line_detector_node/line_points (Path) - Line points, mission 3

Publishers:
    task_manager/status (String) - JSON {"state", "is_error"} on every state change
    task_manager/events (String) - Name of every mission event
    object_cordinates (Point) - Cubes found in mission 1
    global_path (Path) - Accumulated line path of mission 3
    nodes_monitor (nodes_monitor_msgs/Status) - Node lifecycle status

Parameters:
    Every TaskManagerConfig field, nested sections as `cube_hunt.cubes_count`.

Usage:
    ros2 run task_manager task_manager_node
    ros2 launch task_manager task_manager.launch.py
"""

import json
from typing import Sequence

import rclpy
from rclpy.callback_groups import ReentrantCallbackGroup
from rclpy.executors import MultiThreadedExecutor
from rclpy.node import Node
from rclpy.qos import qos_profile_sensor_data

from geometry_msgs.msg import Point, PoseStamped
from nav_msgs.msg import Path
from sensor_msgs.msg import BatteryState
from std_msgs.msg import Header, String

from task_manager.config import TaskManagerConfig
from task_manager.interfaces import MissionServices, NodeStatus, StatusReporter
from task_manager.orchestrator import MissionStartError, TaskManager
from task_manager.service_clients import (
    MAP_FRAME,
    RosMotionClient,
    RosNavigationClient,
    RosPerceptionClient,
    RosWallRegistry,
    ServiceCaller,
)
from task_manager.telemetry import MissionCancelled, Telemetry

NODE_NAME = 'task_manager'


class RosStatusReporter(StatusReporter):
    """Publishes mission progress on the task manager topics."""

    def __init__(self, node: Node):
        self._node = node
        self._status_pub = node.create_publisher(String, 'task_manager/status', 20)
        self._events_pub = node.create_publisher(String, 'task_manager/events', 20)
        self._cubes_pub = node.create_publisher(Point, 'object_cordinates', 1)
        self._path_pub = node.create_publisher(Path, 'global_path', 1)
        try:
            from nodes_monitor_msgs.msg import Status
            self._Status = Status
            self._monitor_pub = node.create_publisher(Status, 'nodes_monitor', 1)
        except ImportError:
            node.get_logger().warning('nodes_monitor_msgs not available - node status not published')
            self._monitor_pub = None

    def publish_status(self, text: str, is_error: bool = False) -> None:
        self._status_pub.publish(String(data=json.dumps({'state': text, 'is_error': is_error})))

    def publish_event(self, name: str) -> None:
        self._events_pub.publish(String(data=name))

    def publish_cube(self, position: Sequence[float]) -> None:
        x, y, z = (float(v) for v in position)
        self._cubes_pub.publish(Point(x=x, y=y, z=z))

    def publish_path(self, points: Sequence[Sequence[float]]) -> None:
        header = Header(frame_id=MAP_FRAME, stamp=self._node.get_clock().now().to_msg())
        msg = Path(header=header)
        for x, y, z in points:
            pose = PoseStamped(header=header)
            pose.pose.position = Point(x=float(x), y=float(y), z=float(z))
            pose.pose.orientation.w = 1.0
            msg.poses.append(pose)
        self._path_pub.publish(msg)

    def publish_node_status(self, status: NodeStatus) -> None:
        if self._monitor_pub is None:
            return
        msg = self._Status()
        msg.status = {
            NodeStatus.INITIALIZED: self._Status.INITIALIZED,
            NodeStatus.STARTED: self._Status.STARTED,
        }[status]
        self._monitor_pub.publish(msg)


class TaskManagerNode(Node):
    """
    ROS 2 node hosting the TaskManager.

    All callbacks share a reentrant callback group so that blocking
    mission calls made from worker threads never starve subscriptions.
    """

    def __init__(self):
        super().__init__(NODE_NAME)

        self._declare_parameters()
        self.config = self._load_config()

        self._cb_group = ReentrantCallbackGroup()
        self.telemetry = Telemetry()
        self.reporter = RosStatusReporter(self)

        caller = ServiceCaller(self, wait_timeout_sec=self.config.service_wait_timeout_sec)
        services = MissionServices(
            perception=RosPerceptionClient(self, caller, self._cb_group),
            motion=RosMotionClient(self, caller, self._cb_group),
            navigation=RosNavigationClient(self, self.config.cancel_goals_settle_sec, self._cb_group),
            walls=RosWallRegistry(self, caller, self._cb_group),
            telemetry=self.telemetry,
            reporter=self.reporter,
        )
        self.task_manager = TaskManager(self.config, services)

        self._init_subscriptions()
        self._init_services()

        self.reporter.publish_node_status(NodeStatus.INITIALIZED)
        self.get_logger().info(f'{NODE_NAME} is initialized.')

    def _declare_parameters(self) -> None:
        """Declare every config field with its default."""
        for name, default in TaskManagerConfig().flatten().items():
            self.declare_parameter(name, default)

    def _load_config(self) -> TaskManagerConfig:
        values = {
            name: self.get_parameter(name).value
            for name in TaskManagerConfig().flatten()
        }
        return TaskManagerConfig.from_dict(values)

    def _init_subscriptions(self) -> None:
        self.create_subscription(
            PoseStamped, '/mavros/local_position/pose', self._pose_callback,
            qos_profile_sensor_data, callback_group=self._cb_group,
        )
        self.create_subscription(
            BatteryState, '/mavros/battery', self._battery_callback,
            qos_profile_sensor_data, callback_group=self._cb_group,
        )
        self.create_subscription(
            Path, '/line_detector_node/line_points', self._line_points_callback, 4,
            callback_group=self._cb_group,
        )
        try:
            from qr_detector_msgs.msg import QRCodeArray
            self.create_subscription(
                QRCodeArray, 'vision/qr_codes', self._qr_codes_callback, 1,
                callback_group=self._cb_group,
            )
        except ImportError:
            self.get_logger().warning('qr_detector_msgs not available - mission 2 will see no QR codes')

    def _init_services(self) -> None:
        try:
            from task_manager_msgs.srv import Start
            self._start_srv = self.create_service(
                Start, f'{NODE_NAME}/start', self._start_callback, callback_group=self._cb_group,
            )
            self.get_logger().info('Start service created')
        except ImportError as e:
            self.get_logger().error(
                f'Failed to import start service: {e}. '
                'Run colcon build to generate message types.'
            )

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def _pose_callback(self, msg: PoseStamped) -> None:
        p, q = msg.pose.position, msg.pose.orientation
        self.telemetry.update_pose((p.x, p.y, p.z), (q.x, q.y, q.z, q.w))

    def _battery_callback(self, msg: BatteryState) -> None:
        self.telemetry.update_voltage(msg.voltage)

    def _qr_codes_callback(self, msg) -> None:
        observations = [
            ((qr.position.x, qr.position.y, qr.position.z), qr.data)
            for qr in msg.qr_codes
        ]
        if observations:
            self.task_manager.handle_qr_codes(observations)

    def _line_points_callback(self, msg: Path) -> None:
        points = [(p.pose.position.x, p.pose.position.y, p.pose.position.z) for p in msg.poses]
        try:
            self.task_manager.handle_line_points(points)
        except MissionCancelled:
            pass

    def _start_callback(self, request, response):
        """Start the mission selected by `request.task`."""
        self.get_logger().info(f'Start request for mission {request.task}')
        try:
            self.task_manager.start_mission(request.task)
            response.success = True
            response.message = f'Mission {request.task} started'
        except MissionStartError as e:
            self.get_logger().error(str(e))
            response.success = False
            response.message = str(e)
        return response

    def shutdown(self) -> None:
        self.task_manager.shutdown()


def main(args=None):
    """Main entry point for task_manager_node."""
    rclpy.init(args=args)

    node = TaskManagerNode()

    executor = MultiThreadedExecutor(num_threads=4)
    executor.add_node(node)

    try:
        executor.spin()
    except KeyboardInterrupt:
        node.get_logger().info('Shutting down task manager')
    finally:
        node.shutdown()
        node.destroy_node()
        rclpy.shutdown()


if __name__ == '__main__':
    main()
