"""
task_manager - ROS 2 package running autonomous UAV missions

Each mission is an event-driven state machine: watcher threads turn
perception, telemetry and timers into events, a per-mission transition
table maps (state, event) to the next state plus side effects, and a
thin adapter performs those effects through the external services.

Components:
    - MissionStateMachine: Table-driven engine with atomic apply()
    - CubeHuntMission: Mission 1, find cubes inside a building
    - QrMazeMission: Mission 2, traverse rooms guided by QR codes
    - LineFollowingMission: Mission 3, follow a line on the ground
    - TaskManager: Mission selection and lifecycle
    - TaskManagerNode: ROS 2 node with the start service
"""

from task_manager.state_machine import MissionStateMachine, Transition, TransitionTable

__all__ = ['MissionStateMachine', 'Transition', 'TransitionTable']
