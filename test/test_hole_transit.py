#!/usr/bin/env python3
"""
test_hole_transit.py - Unit tests for the hole-transit detector

Tests arming, completion, monotonicity and the end-to-end position
sequence through an aperture.
"""

import pytest

from task_manager import hole_transit
from task_manager.geometry import IDENTITY_QUATERNION, Pose
from task_manager.hole_transit import TransitPhase

APERTURE = Pose(position=(2.0, 0.0, 1.5), orientation=IDENTITY_QUATERNION)


def detector(initial=(0.0, 0.0, 1.5), arming=0.3, completion=0.3):
    return hole_transit.begin(APERTURE, arming, completion, initial)


class TestArming:
    """Test when the detector records its start point."""

    def test_far_vehicle_is_unarmed(self):
        """Starting 0.5 m from the plane with arming distance 0.3 stays unarmed."""
        state = detector(initial=(1.5, 0.0, 1.5))
        assert state.phase == TransitPhase.UNARMED
        assert state.start_point is None
        assert not state.flew_through

    def test_near_vehicle_arms_immediately(self):
        state = detector(initial=(1.8, 0.0, 1.5))
        assert state.phase == TransitPhase.ARMED
        assert state.start_point == (1.8, 0.0, 1.5)

    def test_arming_then_completion(self):
        """0.5 -> 0.2 arms; opposite side at >= completion distance completes."""
        state = detector(initial=(1.5, 0.0, 1.5))
        state = hole_transit.update(state, (1.8, 0.0, 1.5))
        assert state.phase == TransitPhase.ARMED
        assert not state.flew_through

        state = hole_transit.update(state, (2.4, 0.0, 1.5))
        assert state.flew_through

    def test_lateral_offset_does_not_matter(self):
        """Only the distance to the plane counts, not to the center."""
        state = detector(initial=(1.9, 5.0, 1.5))
        assert state.phase == TransitPhase.ARMED


class TestCompletion:
    """Test the completion condition."""

    def test_not_far_enough_past_plane(self):
        state = detector(initial=(1.8, 0.0, 1.5))
        state = hole_transit.update(state, (2.2, 0.0, 1.5))
        assert not state.flew_through

    def test_far_on_start_side_is_not_transit(self):
        state = detector(initial=(1.8, 0.0, 1.5))
        state = hole_transit.update(state, (1.0, 0.0, 1.5))
        assert not state.flew_through

    def test_unarmed_detector_never_completes(self):
        """Jumping across without passing near the plane is not a transit."""
        state = detector(initial=(0.0, 0.0, 1.5))
        state = hole_transit.update(state, (3.0, 0.0, 1.5))
        assert state.phase == TransitPhase.UNARMED
        assert not state.flew_through

    def test_end_to_end_sequence(self):
        """Positions 1.8 -> 2.0 -> 2.4 give false, false, true."""
        state = detector(initial=(0.0, 0.0, 1.5))
        results = []
        for position in [(1.8, 0.0, 1.5), (2.0, 0.0, 1.5), (2.4, 0.0, 1.5)]:
            state = hole_transit.update(state, position)
            results.append(state.flew_through)
        assert results == [False, False, True]


class TestMonotonicity:
    """Once flown through, the detector stays flown through."""

    @pytest.mark.parametrize('later', [
        (1.8, 0.0, 1.5),
        (0.0, 0.0, 1.5),
        (2.0, 0.0, 1.5),
        (10.0, -3.0, 0.0),
    ])
    def test_flew_through_is_sticky(self, later):
        state = detector(initial=(1.8, 0.0, 1.5))
        state = hole_transit.update(state, (2.5, 0.0, 1.5))
        assert state.flew_through
        for _ in range(3):
            state = hole_transit.update(state, later)
            assert state.flew_through

    def test_updates_return_new_states(self):
        """Detector states are immutable snapshots."""
        initial = detector(initial=(1.5, 0.0, 1.5))
        armed = hole_transit.update(initial, (1.9, 0.0, 1.5))
        assert initial.start_point is None
        assert armed.start_point == (1.9, 0.0, 1.5)
