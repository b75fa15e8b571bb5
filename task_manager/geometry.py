"""
geometry.py - Geometry kernel for aperture navigation

Pure functions over positions, orientations and planes used by the
hole-transit detector and the mission actions.

Conventions:
    Positions are (x, y, z) in the map frame.
    Orientations are unit quaternions in ROS/scipy order (x, y, z, w).
    An aperture frame has its local x-axis along the aperture normal
    (depth), y-axis along its width and z-axis along its height.

All functions take array-likes and return plain floats/tuples so results
can be stored in frozen dataclasses.
"""

import math
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation


IDENTITY_QUATERNION = (0.0, 0.0, 0.0, 1.0)
WORLD_UP = np.array([0.0, 0.0, 1.0])

# Vectors shorter than this are treated as zero
_EPS = 1e-9


@dataclass(frozen=True)
class Pose:
    """Position plus orientation (x, y, z, w) in the map frame."""
    position: tuple[float, float, float]
    orientation: tuple[float, float, float, float] = IDENTITY_QUATERNION


@dataclass(frozen=True)
class DetectedObject:
    """
    Object reported by the perception collaborator.

    For apertures `dimensions` is (depth, width, height) once the
    perception convention has been fixed with fix_aperture_convention().
    """
    id: int
    pose: Pose
    dimensions: tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass(frozen=True)
class PlaneEquation:
    """Coefficients of A*x + B*y + C*z + D = 0."""
    a: float
    b: float
    c: float
    d: float

    @property
    def normal(self) -> np.ndarray:
        return np.array([self.a, self.b, self.c])


def _vec(point: Sequence[float]) -> np.ndarray:
    return np.asarray(point, dtype=float).reshape(3)


def _as_tuple(vector: np.ndarray) -> tuple:
    return tuple(float(v) for v in vector)


def distance(point1: Sequence[float], point2: Sequence[float]) -> float:
    """Euclidean distance between two points."""
    return float(np.linalg.norm(_vec(point1) - _vec(point2)))


def plane_from_point_and_normal(
    center: Sequence[float],
    orientation: Sequence[float],
) -> PlaneEquation:
    """
    Build the plane through `center` whose normal is the local x-axis of
    `orientation`.

    Args:
        center: Point on the plane
        orientation: Quaternion (x, y, z, w)

    Returns:
        PlaneEquation with a unit normal
    """
    normal = Rotation.from_quat(orientation).apply([1.0, 0.0, 0.0])
    d = -float(np.dot(normal, _vec(center)))
    return PlaneEquation(float(normal[0]), float(normal[1]), float(normal[2]), d)


def signed_distance(point: Sequence[float], plane: PlaneEquation) -> float:
    """Signed distance from `point` to `plane` (positive on the normal side)."""
    normal = plane.normal
    norm = float(np.linalg.norm(normal))
    if norm < _EPS:
        return 0.0
    return (float(np.dot(normal, _vec(point))) + plane.d) / norm


def point_to_plane_distance(point: Sequence[float], plane: PlaneEquation) -> float:
    """Unsigned distance from `point` to `plane`."""
    return abs(signed_distance(point, plane))


def same_side(
    point1: Sequence[float],
    point2: Sequence[float],
    plane: PlaneEquation,
) -> bool:
    """
    Return False only when the points lie strictly on opposite sides.

    A point lying exactly on the plane is never "opposite" to anything.
    """
    s1 = signed_distance(point1, plane)
    s2 = signed_distance(point2, plane)
    return not ((s1 > 0.0 and s2 < 0.0) or (s1 < 0.0 and s2 > 0.0))


def face_toward(direction: Sequence[float]) -> tuple[float, float, float, float]:
    """
    Orientation whose local x-axis points along `direction` with the local
    z-axis kept as close to world-up as possible.

    Degenerate inputs do not raise:
        - zero vector -> identity orientation
        - direction parallel to world-up -> world-y is used as local y-axis
    """
    direction = _vec(direction)
    length = float(np.linalg.norm(direction))
    if length < _EPS:
        return IDENTITY_QUATERNION

    x_axis = direction / length
    y_axis = np.cross(WORLD_UP, x_axis)
    y_norm = float(np.linalg.norm(y_axis))
    if y_norm < _EPS:
        y_axis = np.array([0.0, 1.0, 0.0])
    else:
        y_axis = y_axis / y_norm
    z_axis = np.cross(x_axis, y_axis)

    matrix = np.column_stack((x_axis, y_axis, z_axis))
    return _as_tuple(Rotation.from_matrix(matrix).as_quat())


def orientation_toward_point(point: Sequence[float]) -> tuple[float, float, float, float]:
    """Orientation facing from the map origin toward `point`."""
    return face_toward(point)


def entry_point(
    aperture: DetectedObject,
    observer_position: Sequence[float],
    standoff_distance: float,
) -> Pose:
    """
    Pick the goal pose for flying through `aperture`.

    The two candidates lie `standoff_distance` along the aperture normal on
    either side of its center. The one farther from the observer is chosen
    so the vehicle crosses the whole aperture. On a tie the candidate on the
    positive local-x side wins.

    The returned orientation faces back toward the aperture center,
    projected onto the horizontal plane.
    """
    center = _vec(aperture.pose.position)
    observer = _vec(observer_position)
    offset = Rotation.from_quat(aperture.pose.orientation).apply([standoff_distance, 0.0, 0.0])

    positive_side = center + offset
    negative_side = center - offset
    if np.linalg.norm(observer - positive_side) >= np.linalg.norm(observer - negative_side):
        chosen = positive_side
    else:
        chosen = negative_side

    heading = center - chosen
    heading[2] = 0.0
    return Pose(position=_as_tuple(chosen), orientation=face_toward(heading))


def fix_aperture_convention(aperture: DetectedObject) -> DetectedObject:
    """
    Convert an aperture from the perception convention to the mission frame.

    Perception reports dimensions as (width, height, depth) and an
    orientation lying in the aperture plane. This returns a new object with
    dimensions (depth, width, height) and the orientation rotated 90 degrees
    about its local y-axis so local x becomes the plane normal.

    Apply exactly once per freshly perceived aperture.
    """
    width, height, depth = aperture.dimensions
    rotated = Rotation.from_quat(aperture.pose.orientation) * Rotation.from_euler('y', math.pi / 2)
    return replace(
        aperture,
        pose=Pose(position=aperture.pose.position, orientation=_as_tuple(rotated.as_quat())),
        dimensions=(depth, width, height),
    )


def has_similar_orientation(
    previous_point: Sequence[float],
    current_point: Sequence[float],
    next_point: Sequence[float],
) -> bool:
    """
    True if previous->current and current->next point roughly the same way.

    A plane is built at `current_point` with normal previous->current. The
    directions agree when `previous_point` and `next_point` lie strictly on
    opposite sides of it. Coincident previous/current points give False.
    """
    step = _vec(current_point) - _vec(previous_point)
    if np.linalg.norm(step) < _EPS:
        return False
    plane = plane_from_point_and_normal(current_point, face_toward(step))
    return not same_side(previous_point, next_point, plane)


def yaw_between_points(from_point: Sequence[float], to_point: Sequence[float]) -> float:
    """Heading (rad) from `from_point` to `to_point`; pi for coincident points."""
    delta = _vec(to_point) - _vec(from_point)
    if np.linalg.norm(delta) < _EPS:
        return math.pi
    return math.atan2(float(delta[1]), float(delta[0]))


def yaw_from_orientation(orientation: Sequence[float]) -> float:
    """Extract yaw (rad) from a quaternion."""
    return float(Rotation.from_quat(orientation).as_euler('xyz')[2])


def nearest(
    reference: Sequence[float],
    candidates: Sequence[Sequence[float]],
    max_distance: float,
) -> Optional[int]:
    """
    Index of the candidate closest to `reference` within `max_distance`.

    Ties keep the earliest candidate (iteration order).
    """
    best_index = None
    best_distance = math.inf
    for index, candidate in enumerate(candidates):
        d = distance(reference, candidate)
        if d <= max_distance and d < best_distance:
            best_index = index
            best_distance = d
    return best_index
