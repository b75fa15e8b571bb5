"""Mission types run by the task manager."""

from task_manager.missions.base import Mission
from task_manager.missions.cube_hunt import CubeHuntMission
from task_manager.missions.line_following import LineFollowingMission
from task_manager.missions.qr_maze import QrMazeMission

__all__ = ['Mission', 'CubeHuntMission', 'QrMazeMission', 'LineFollowingMission']
