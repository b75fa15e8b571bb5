"""
service_clients.py - ROS 2 implementations of the mission collaborators

Perception (pos_collector), motion (takeoff/landing, spin, exploration
switch, raw setpoints), navigation (fast planner action) and virtual
wall registration, all through rclpy clients on the task manager node.

Calls are made from mission worker threads while the node is spun by a
MultiThreadedExecutor, so every request is sent with call_async() and the
calling thread waits on the future.

Services:
    vision/{cubes,holes}/pos_collector/count (pos_collector_msgs/Count)
    vision/{cubes,holes}/pos_collector/get_all (pos_collector_msgs/GetAll)
    vision/holes/pos_collector/get_nearest (pos_collector_msgs/NearestPos)
    takeoff_landing (autotakeoff/Takeoff)
    motion_controller/spin (motion_controller/Spin)
    motion_controller/stop (std_srvs/Empty)
    fuel/use_fuel (std_srvs/SetBool)
    sdf_map/add_wall (plan_env/AddWalls)
    sdf_map/set_are_walls_enabled (std_srvs/SetBool)

Action Clients:
    fast_planner_server (fast_planner_server/FastPlanner)
"""

import threading
import time
from typing import Callable, Optional, Sequence

import rclpy
from rclpy.action import ActionClient
from rclpy.node import Node

from geometry_msgs.msg import Point, Pose as PoseMsg, Quaternion
from std_msgs.msg import Header
from std_srvs.srv import Empty, SetBool

from task_manager.geometry import DetectedObject, Pose
from task_manager.interfaces import (
    MotionClient,
    NavigationClient,
    ObjectKind,
    PerceptionClient,
    ServiceCallError,
    WallRegistry,
)

MAP_FRAME = 'map'


def pose_to_msg(pose: Pose) -> PoseMsg:
    msg = PoseMsg()
    msg.position = Point(x=float(pose.position[0]), y=float(pose.position[1]), z=float(pose.position[2]))
    x, y, z, w = pose.orientation
    msg.orientation = Quaternion(x=float(x), y=float(y), z=float(z), w=float(w))
    return msg


def pose_from_msg(msg: PoseMsg) -> Pose:
    return Pose(
        position=(msg.position.x, msg.position.y, msg.position.z),
        orientation=(msg.orientation.x, msg.orientation.y, msg.orientation.z, msg.orientation.w),
    )


def detected_object_from_msg(msg) -> DetectedObject:
    """Convert a detection_msgs/DetectedObject (perception convention)."""
    return DetectedObject(
        id=int(msg.id),
        pose=pose_from_msg(msg.pose),
        dimensions=(msg.dimensions.x, msg.dimensions.y, msg.dimensions.z),
    )


def detected_object_to_msg(obj: DetectedObject, msg_type):
    msg = msg_type()
    msg.id = obj.id
    msg.pose = pose_to_msg(obj.pose)
    msg.dimensions.x, msg.dimensions.y, msg.dimensions.z = (float(v) for v in obj.dimensions)
    return msg


class ServiceCaller:
    """
    Blocking request helper shared by the collaborator clients.

    Waits for a service in a loop, logging a reminder after every
    `wait_timeout_sec`, then sends the request and waits for the response.
    """

    def __init__(self, node: Node, wait_timeout_sec: float = 10.0, call_timeout_sec: float = 60.0):
        self._node = node
        self._wait_timeout_sec = wait_timeout_sec
        self._call_timeout_sec = call_timeout_sec
        self._ready: set[str] = set()

    def wait_for_service(self, client, name: str) -> None:
        if name in self._ready:
            return
        while rclpy.ok() and not client.wait_for_service(timeout_sec=self._wait_timeout_sec):
            self._node.get_logger().info(f'Waiting for required service "{name}"...')
        if not rclpy.ok():
            raise ServiceCallError(f'Stopped waiting for service "{name}" due to ROS shutdown')
        self._node.get_logger().info(f'Required service "{name}" is up.')
        self._ready.add(name)

    def call(self, client, name: str, request, timeout_sec: Optional[float] = None):
        """Send `request` and block until the response arrives."""
        if client is None:
            raise ServiceCallError(f'Service "{name}" is not available in this build')
        self.wait_for_service(client, name)

        done = threading.Event()
        future = client.call_async(request)
        future.add_done_callback(lambda _: done.set())
        if not done.wait(timeout_sec or self._call_timeout_sec):
            raise ServiceCallError(f'Service "{name}" did not respond in time')

        result = future.result()
        if result is None:
            raise ServiceCallError(f'Service "{name}" failed: {future.exception()}')
        return result

    def call_async(self, client, name: str, request) -> None:
        """Send `request` without waiting for the response."""
        if client is None:
            raise ServiceCallError(f'Service "{name}" is not available in this build')
        self.wait_for_service(client, name)
        client.call_async(request)


class RosPerceptionClient(PerceptionClient):
    """pos_collector queries for cubes and apertures."""

    def __init__(self, node: Node, caller: ServiceCaller, callback_group=None):
        self._node = node
        self._caller = caller
        self._count = {}
        self._get_all = {}
        self._get_nearest = None
        self._Count = self._GetAll = self._NearestPos = None
        try:
            from pos_collector_msgs.srv import Count, GetAll, NearestPos
            self._Count, self._GetAll, self._NearestPos = Count, GetAll, NearestPos
            for kind in ObjectKind:
                prefix = f'vision/{kind.value}/pos_collector'
                self._count[kind] = node.create_client(Count, f'{prefix}/count', callback_group=callback_group)
                self._get_all[kind] = node.create_client(GetAll, f'{prefix}/get_all', callback_group=callback_group)
            self._get_nearest = node.create_client(
                NearestPos, 'vision/holes/pos_collector/get_nearest', callback_group=callback_group
            )
        except ImportError:
            node.get_logger().warning('pos_collector_msgs not available - perception queries will fail')

    def _require_messages(self) -> None:
        if self._Count is None:
            raise ServiceCallError('pos_collector_msgs is not available in this build')

    def get_nearest_aperture(self) -> Optional[DetectedObject]:
        self._require_messages()
        request = self._NearestPos.Request()
        request.my_pose.header = Header(frame_id='base_link')
        request.my_pose.pose = pose_to_msg(Pose(position=(0.0, 0.0, 0.0)))
        try:
            response = self._caller.call(
                self._get_nearest, 'vision/holes/pos_collector/get_nearest', request
            )
        except ServiceCallError:
            # The collector fails the request until the first aperture is seen
            return None
        objects = response.nearest_obj.detected_objects
        return detected_object_from_msg(objects[0]) if objects else None

    def count_objects(self, kind: ObjectKind) -> int:
        self._require_messages()
        response = self._caller.call(
            self._count.get(kind), f'vision/{kind.value}/pos_collector/count', self._Count.Request()
        )
        return int(response.count)

    def get_all_objects(self, kind: ObjectKind) -> list[DetectedObject]:
        self._require_messages()
        response = self._caller.call(
            self._get_all.get(kind), f'vision/{kind.value}/pos_collector/get_all', self._GetAll.Request()
        )
        return [detected_object_from_msg(obj) for obj in response.objects.detected_objects]


class RosMotionClient(MotionClient):
    """Takeoff/landing, spin and exploration switches, raw position setpoints."""

    def __init__(self, node: Node, caller: ServiceCaller, callback_group=None):
        self._node = node
        self._caller = caller
        self._stop_spin = node.create_client(Empty, 'motion_controller/stop', callback_group=callback_group)
        self._use_fuel = node.create_client(SetBool, 'fuel/use_fuel', callback_group=callback_group)

        self._takeoff = None
        self._spin = None
        self._setpoint_pub = None
        try:
            from autotakeoff.srv import Takeoff
            self._Takeoff = Takeoff
            self._takeoff = node.create_client(Takeoff, 'takeoff_landing', callback_group=callback_group)
        except ImportError:
            node.get_logger().warning('autotakeoff not available - takeoff/landing will fail')
        try:
            from motion_controller.srv import Spin
            self._Spin = Spin
            self._spin = node.create_client(Spin, 'motion_controller/spin', callback_group=callback_group)
        except ImportError:
            node.get_logger().warning('motion_controller not available - spins will fail')
        try:
            from mavros_msgs.msg import PositionTarget
            self._PositionTarget = PositionTarget
            self._setpoint_pub = node.create_publisher(PositionTarget, '/mavros/setpoint_raw/local', 10)
        except ImportError:
            node.get_logger().warning('mavros_msgs not available - position targets disabled')

    def _takeoff_request(self, height: float, land: bool):
        request = self._Takeoff.Request()
        request.height = float(height)
        request.land = land
        return request

    def take_off(self, altitude: float) -> None:
        if self._takeoff is None:
            raise ServiceCallError('Service "takeoff_landing" is not available in this build')
        self._caller.call(self._takeoff, 'takeoff_landing', self._takeoff_request(altitude, False))

    def land(self) -> None:
        if self._takeoff is None:
            raise ServiceCallError('Service "takeoff_landing" is not available in this build')
        self._caller.call(self._takeoff, 'takeoff_landing', self._takeoff_request(0.0, True))

    def _spin_request(self, laps: int, altitude: float, angular_velocity: float):
        request = self._Spin.Request()
        request.laps_count = int(laps)
        request.altitude = float(altitude)
        request.angular_velocity = float(angular_velocity)
        return request

    def spin(self, laps: int, altitude: float, angular_velocity: float) -> None:
        if self._spin is None:
            raise ServiceCallError('Service "motion_controller/spin" is not available in this build')
        self._caller.call_async(
            self._spin, 'motion_controller/spin', self._spin_request(laps, altitude, angular_velocity)
        )

    def spin_and_wait(self, laps: int, altitude: float, angular_velocity: float) -> None:
        if self._spin is None:
            raise ServiceCallError('Service "motion_controller/spin" is not available in this build')
        self._caller.call(
            self._spin, 'motion_controller/spin', self._spin_request(laps, altitude, angular_velocity)
        )

    def stop_spinning(self) -> None:
        self._caller.call(self._stop_spin, 'motion_controller/stop', Empty.Request())

    def _set_exploration(self, enabled: bool) -> None:
        self._caller.call(self._use_fuel, 'fuel/use_fuel', SetBool.Request(data=enabled))

    def start_exploration(self) -> None:
        self._set_exploration(True)

    def pause_exploration(self) -> None:
        self._set_exploration(False)

    def send_position_target(self, position: Sequence[float], yaw: float) -> None:
        if self._setpoint_pub is None:
            return
        PositionTarget = self._PositionTarget
        msg = PositionTarget()
        msg.header = Header(frame_id=MAP_FRAME, stamp=self._node.get_clock().now().to_msg())
        msg.coordinate_frame = PositionTarget.FRAME_LOCAL_NED
        msg.type_mask = (
            PositionTarget.IGNORE_VX | PositionTarget.IGNORE_VY | PositionTarget.IGNORE_VZ
            | PositionTarget.IGNORE_AFX | PositionTarget.IGNORE_AFY | PositionTarget.IGNORE_AFZ
        )
        msg.position = Point(x=float(position[0]), y=float(position[1]), z=float(position[2]))
        msg.yaw = float(yaw)
        msg.yaw_rate = 0.0
        self._setpoint_pub.publish(msg)


class RosNavigationClient(NavigationClient):
    """Goal channel of the fast planner action server."""

    ACTION_NAME = 'fast_planner_server'

    def __init__(self, node: Node, settle_sec: float = 1.0, callback_group=None):
        self._node = node
        self._settle_sec = settle_sec
        self._client = None
        self._goal_handles = []
        self._lock = threading.Lock()
        try:
            from fast_planner_server.action import FastPlanner
            self._FastPlanner = FastPlanner
            self._client = ActionClient(node, FastPlanner, self.ACTION_NAME, callback_group=callback_group)
        except ImportError:
            node.get_logger().warning('fast_planner_server not available - navigation goals will fail')

    def _wait_for_server(self) -> None:
        if self._client is None:
            raise ServiceCallError(f'Action "{self.ACTION_NAME}" is not available in this build')
        while rclpy.ok() and not self._client.wait_for_server(timeout_sec=10.0):
            self._node.get_logger().info(f'Waiting for required action server "{self.ACTION_NAME}"...')

    def send_goal(self, pose: Pose, on_done: Optional[Callable[[], None]] = None) -> None:
        self._wait_for_server()
        goal = self._FastPlanner.Goal()
        goal.header = Header(frame_id=MAP_FRAME, stamp=self._node.get_clock().now().to_msg())
        goal.pose = pose_to_msg(pose)
        self._node.get_logger().info(f'Sending goal {pose.position}')

        def on_goal_response(future):
            goal_handle = future.result()
            if goal_handle is None or not goal_handle.accepted:
                self._node.get_logger().warning(f'Goal {pose.position} was rejected')
                return
            with self._lock:
                self._goal_handles.append(goal_handle)
            if on_done is not None:
                goal_handle.get_result_async().add_done_callback(lambda _: on_done())

        self._client.send_goal_async(goal).add_done_callback(on_goal_response)

    def cancel_all_goals(self) -> None:
        with self._lock:
            handles, self._goal_handles = self._goal_handles, []
        for goal_handle in handles:
            goal_handle.cancel_goal_async()
        time.sleep(self._settle_sec)


class RosWallRegistry(WallRegistry):
    """Virtual walls of the planners' SDF map."""

    def __init__(self, node: Node, caller: ServiceCaller, callback_group=None):
        self._caller = caller
        self._set_enabled = node.create_client(
            SetBool, 'sdf_map/set_are_walls_enabled', callback_group=callback_group
        )
        self._add_wall = None
        try:
            from plan_env.srv import AddWalls
            from detection_msgs.msg import DetectedObject as DetectedObjectMsg
            self._AddWalls = AddWalls
            self._DetectedObjectMsg = DetectedObjectMsg
            self._add_wall = node.create_client(AddWalls, 'sdf_map/add_wall', callback_group=callback_group)
        except ImportError:
            node.get_logger().warning('plan_env not available - walls cannot be added')

    def add_wall(self, aperture: DetectedObject) -> None:
        if self._add_wall is None:
            raise ServiceCallError('Service "sdf_map/add_wall" is not available in this build')
        request = self._AddWalls.Request()
        request.objects.header = Header(frame_id=MAP_FRAME)
        request.objects.detected_objects = [detected_object_to_msg(aperture, self._DetectedObjectMsg)]
        self._caller.call(self._add_wall, 'sdf_map/add_wall', request)

    def set_walls_enabled(self, enabled: bool) -> None:
        self._caller.call(self._set_enabled, 'sdf_map/set_are_walls_enabled', SetBool.Request(data=enabled))
