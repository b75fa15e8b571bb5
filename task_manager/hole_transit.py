"""
hole_transit.py - Detects that the vehicle has flown through an aperture

Incremental, pure detector driven by a stream of vehicle positions:

    UNARMED --(vehicle within arming distance of the plane)--> ARMED
    ARMED --(strictly opposite side, >= completion distance)--> flew_through

The position where the detector armed is kept as `start_point`. Once
`flew_through` is True it stays True for that detector state chain.

Example:
    >>> state = begin(aperture.pose, 0.3, 0.3, vehicle_position)
    >>> while not state.flew_through:
    ...     state = update(state, telemetry.wait_for_position())
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Optional, Sequence

from task_manager import geometry
from task_manager.geometry import PlaneEquation, Pose


class TransitPhase(Enum):
    """Observable detector states."""
    UNARMED = auto()
    ARMED = auto()


@dataclass(frozen=True)
class TransitDetectorState:
    """Snapshot of the detector; every update returns a new instance."""
    plane: PlaneEquation
    aperture_center: tuple[float, float, float]
    aperture_orientation: tuple[float, float, float, float]
    arming_distance: float
    completion_distance: float
    start_point: Optional[tuple[float, float, float]] = None
    flew_through: bool = False

    @property
    def phase(self) -> TransitPhase:
        return TransitPhase.UNARMED if self.start_point is None else TransitPhase.ARMED


def _point(position: Sequence[float]) -> tuple[float, float, float]:
    x, y, z = (float(v) for v in position)
    return (x, y, z)


def begin(
    aperture_pose: Pose,
    arming_distance: float,
    completion_distance: float,
    initial_vehicle_position: Sequence[float],
) -> TransitDetectorState:
    """
    Create a detector for the aperture at `aperture_pose`.

    Args:
        aperture_pose: Aperture center and orientation (local x = normal)
        arming_distance: Max distance to the plane to record the start point
        completion_distance: Min distance past the plane to report transit
        initial_vehicle_position: Vehicle position when detection starts

    Returns:
        ARMED state if the vehicle is already close to the plane,
        UNARMED otherwise
    """
    plane = geometry.plane_from_point_and_normal(
        aperture_pose.position, aperture_pose.orientation
    )
    initial = _point(initial_vehicle_position)
    start_point = None
    if geometry.point_to_plane_distance(initial, plane) <= arming_distance:
        start_point = initial

    return TransitDetectorState(
        plane=plane,
        aperture_center=_point(aperture_pose.position),
        aperture_orientation=tuple(float(v) for v in aperture_pose.orientation),
        arming_distance=arming_distance,
        completion_distance=completion_distance,
        start_point=start_point,
    )


def update(state: TransitDetectorState, vehicle_position: Sequence[float]) -> TransitDetectorState:
    """Feed one vehicle position; returns the next detector state."""
    if state.flew_through:
        return state

    position = _point(vehicle_position)
    distance_to_plane = geometry.point_to_plane_distance(position, state.plane)

    if state.start_point is None:
        if distance_to_plane > state.arming_distance:
            return state
        state = replace(state, start_point=position)

    crossed = not geometry.same_side(state.start_point, position, state.plane)
    if crossed and distance_to_plane >= state.completion_distance:
        return replace(state, flew_through=True)
    return state
