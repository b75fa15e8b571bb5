#!/usr/bin/env python3
"""
task_manager.launch.py - Launch file for the task manager

Launches:
    - task_manager_node: Mission state machines with the start service

Dependencies:
    - mavros for pose, battery and raw setpoints
    - pos_collector, motion_controller, takeoff_landing, fast_planner_server,
      FUEL and sdf_map services for missions 1 and 2

Usage:
    ros2 launch task_manager task_manager.launch.py

Parameters can be overridden via command line:
    ros2 launch task_manager task_manager.launch.py \
        operating_altitude:=1.2 min_battery_voltage:=10.5
"""

import os
from ament_index_python.packages import get_package_share_directory
from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument
from launch.substitutions import LaunchConfiguration
from launch_ros.actions import Node
from launch_ros.parameter_descriptions import ParameterValue


def generate_launch_description():
    """Generate launch description for the task manager."""

    pkg_share = get_package_share_directory('task_manager')
    config_file = os.path.join(pkg_share, 'config', 'task_manager_params.yaml')

    operating_altitude_arg = DeclareLaunchArgument(
        'operating_altitude',
        default_value='1.5',
        description='Cruise altitude for takeoff and spins in meters'
    )

    min_battery_voltage_arg = DeclareLaunchArgument(
        'min_battery_voltage',
        default_value='10.0',
        description='Battery voltage at or below which the mission fails'
    )

    mission_timeout_arg = DeclareLaunchArgument(
        'mission_timeout_minutes',
        default_value='9.0',
        description='Time budget of the active mission part in minutes'
    )

    task_manager_node = Node(
        package='task_manager',
        executable='task_manager_node',
        name='task_manager',
        parameters=[
            config_file,
            {
                'operating_altitude': ParameterValue(
                    LaunchConfiguration('operating_altitude'), value_type=float),
                'min_battery_voltage': ParameterValue(
                    LaunchConfiguration('min_battery_voltage'), value_type=float),
                'mission_timeout_minutes': ParameterValue(
                    LaunchConfiguration('mission_timeout_minutes'), value_type=float),
            }
        ],
        output='screen',
        emulate_tty=True,
    )

    return LaunchDescription([
        operating_altitude_arg,
        min_battery_voltage_arg,
        mission_timeout_arg,
        task_manager_node,
    ])
