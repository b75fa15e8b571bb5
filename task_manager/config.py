"""
config.py - Task manager configuration

Holds flight, detection and cadence parameters for all missions. The
configuration can be built from defaults, from a YAML file (plain or ROS
parameter file) or from ROS node parameters via `flatten()`/`from_dict()`.

Nested mission sections use dotted names in flat form, e.g.
`cube_hunt.cubes_count`, matching ROS 2 nested parameter naming.
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict

import yaml


@dataclass
class CubeHuntConfig:
    """Parameters for mission 1 (find cubes inside a building)."""
    # Number of cubes that have to be found before returning
    cubes_count: int = 5

    def __post_init__(self):
        if self.cubes_count < 1:
            raise ValueError('cubes_count must be >= 1')


@dataclass
class QrMazeConfig:
    """Parameters for mission 2 (QR-guided room traversal)."""
    # QR codes below this z are considered painted on the floor
    max_floor_z: float = 0.2
    # QR codes closer than this (m) are the same code
    max_qr_distance_tolerance: float = 0.2
    # Max distance (m) between an aperture center and a QR to associate them
    max_association_distance: float = 0.6
    # Floor QR contents up to this length are deduplicated by content
    max_floor_content_length: int = 2

    def __post_init__(self):
        if self.max_qr_distance_tolerance < 0.0:
            raise ValueError('max_qr_distance_tolerance must be >= 0')
        if self.max_association_distance < 0.0:
            raise ValueError('max_association_distance must be >= 0')


@dataclass
class TaskManagerConfig:
    """
    Configuration for the task manager node.

    Attributes:
        operating_altitude: Cruise altitude for takeoff and spins (m)
        low_altitude: Altitude of the low scanning spin (m)
        entry_standoff_distance: Goal offset from an aperture center (m)
        transit_arming_distance: Max plane distance to record transit start (m)
        transit_completion_distance: Min distance past the plane to report transit (m)
        min_battery_voltage: Voltage at or below which the mission fails (V)
        mission_timeout_minutes: Time budget of the active mission part
    """

    # Flight
    operating_altitude: float = 1.5
    low_altitude: float = 0.5
    linear_velocity: float = 0.1
    linear_acceleration: float = 0.1
    angular_velocity: float = 0.1
    angular_acceleration: float = 0.1
    line_following_altitude: float = 1.0

    # Aperture transit
    entry_standoff_distance: float = 0.5
    transit_arming_distance: float = 0.3
    transit_completion_distance: float = 0.3

    # Safety watchdogs
    min_battery_voltage: float = 10.0
    mission_timeout_minutes: float = 9.0

    # Event source cadences
    battery_check_hz: float = 1.0
    timer_check_hz: float = 0.2
    transit_check_hz: float = 4.0
    object_poll_hz: float = 1.0
    entry_search_hz: float = 1.0
    line_follow_hz: float = 20.0

    # Line following
    line_target_tolerance: float = 0.2
    line_max_point_distance: float = 3.5
    line_duplicate_point_distance: float = 0.5

    # External services
    service_wait_timeout_sec: float = 10.0
    cancel_goals_settle_sec: float = 1.0

    # Mission sections
    cube_hunt: CubeHuntConfig = field(default_factory=CubeHuntConfig)
    qr_maze: QrMazeConfig = field(default_factory=QrMazeConfig)

    def __post_init__(self):
        """Validate config."""
        if isinstance(self.cube_hunt, dict):
            self.cube_hunt = CubeHuntConfig(**self.cube_hunt)
        if isinstance(self.qr_maze, dict):
            self.qr_maze = QrMazeConfig(**self.qr_maze)

        if self.transit_arming_distance <= 0.0:
            raise ValueError('transit_arming_distance must be > 0')
        for name in ('entry_standoff_distance', 'transit_completion_distance',
                     'operating_altitude', 'low_altitude'):
            if getattr(self, name) < 0.0:
                raise ValueError(f'{name} must be >= 0')
        for name in ('battery_check_hz', 'timer_check_hz', 'transit_check_hz',
                     'object_poll_hz', 'entry_search_hz', 'line_follow_hz'):
            if getattr(self, name) <= 0.0:
                raise ValueError(f'{name} must be > 0')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskManagerConfig':
        """Build config from nested or dotted (flat) keys; unknown keys are rejected."""
        nested: Dict[str, Any] = {}
        for key, value in data.items():
            if '.' in key:
                section, name = key.split('.', 1)
                nested.setdefault(section, {})[name] = value
            elif isinstance(value, dict):
                nested.setdefault(key, {}).update(value)
            else:
                nested[key] = value
        return cls(**nested)

    @classmethod
    def from_yaml(cls, path: str, node_name: str = 'task_manager') -> 'TaskManagerConfig':
        """
        Load configuration from a YAML file.

        Accepts a plain mapping or a ROS 2 parameter file
        (`<node_name>: {ros__parameters: {...}}`).
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if node_name in data and isinstance(data[node_name], dict):
            data = data[node_name]
        if 'ros__parameters' in data:
            data = data['ros__parameters']
        return cls.from_dict(data)

    def to_yaml(self, path: str) -> None:
        """Save configuration to YAML file."""
        with open(path, 'w') as f:
            yaml.dump(asdict(self), f, default_flow_style=False)

    def flatten(self) -> Dict[str, Any]:
        """Return parameters as dotted name -> value, for ROS parameter declaration."""
        flat: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (CubeHuntConfig, QrMazeConfig)):
                for name, section_value in asdict(value).items():
                    flat[f'{f.name}.{name}'] = section_value
            else:
                flat[f.name] = value
        return flat
