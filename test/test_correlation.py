#!/usr/bin/env python3
"""
test_correlation.py - Unit tests for QR / aperture correlation
"""

import pytest

from task_manager.config import QrMazeConfig
from task_manager.geometry import DetectedObject, Pose
from task_manager.missions.correlation import CorrelationStore, Qr

FLOOR_Z = 0.2


def wall_qr(position, content):
    return Qr.observed(position, content, FLOOR_Z)


def floor_qr(x, y, content):
    return Qr.observed((x, y, 0.0), content, FLOOR_Z)


def aperture(aperture_id, position):
    return DetectedObject(id=aperture_id, pose=Pose(position=position))


@pytest.fixture
def store():
    return CorrelationStore(QrMazeConfig())


class TestQrObservation:
    """Test floor tagging."""

    def test_floor_threshold(self):
        assert Qr.observed((0, 0, 0.19), 'A', FLOOR_Z).is_on_floor
        assert not Qr.observed((0, 0, 0.2), 'A', FLOOR_Z).is_on_floor

    def test_position_is_float_tuple(self):
        assert Qr.observed([1, 2, 3], 'A', FLOOR_Z).position == (1.0, 2.0, 3.0)


class TestDetection:
    """Test deduplication of QR codes."""

    def test_first_detection_then_duplicate(self, store):
        qr = wall_qr((1.0, 0.0, 1.5), 'A')
        assert not store.is_already_detected(qr)
        assert store.is_already_detected(qr)
        assert len(store.qrs) == 1

    def test_detect_returns_index(self, store):
        assert store.detect(wall_qr((1.0, 0.0, 1.5), 'A')) == 0
        assert store.detect(wall_qr((5.0, 0.0, 1.5), 'B')) == 1
        assert store.detect(wall_qr((5.1, 0.0, 1.5), 'C')) is None
        assert store.qr(1).content == 'B'

    def test_short_floor_codes_deduplicated_by_content(self, store):
        """The same short floor label seen from two places is one code."""
        assert store.detect(floor_qr(0.0, 0.0, 'A')) == 0
        assert store.detect(floor_qr(4.0, 4.0, 'A')) is None
        assert store.detect(floor_qr(0.05, 0.0, 'B')) == 1

    def test_long_floor_codes_deduplicated_by_distance(self, store):
        assert store.detect(floor_qr(0.0, 0.0, 'ABC')) == 0
        assert store.detect(floor_qr(4.0, 4.0, 'ABC')) == 1
        assert store.detect(floor_qr(4.1, 4.0, 'XYZ')) is None

    def test_floor_qr_with_content(self, store):
        store.detect(wall_qr((1.0, 0.0, 1.5), 'A'))
        store.detect(floor_qr(3.0, 0.0, 'A'))
        assert store.floor_qr_with_content('A') == 1
        assert store.floor_qr_with_content('B') is None


class TestAssociation:
    """Test the one-to-one wall QR / aperture association."""

    def test_qr_then_aperture(self, store):
        index = store.detect(wall_qr((2.0, 0.5, 1.5), 'A'))
        assert store.add_aperture(aperture(7, (2.0, 0.0, 1.5)))
        assert store.aperture_for_qr(index).id == 7
        assert store.qr_for_aperture(7) == index

    def test_aperture_then_qr(self, store):
        store.add_aperture(aperture(7, (2.0, 0.0, 1.5)))
        index = store.detect(wall_qr((2.0, 0.5, 1.5), 'A'))
        assert store.aperture_for_qr(index).id == 7

    def test_known_aperture_is_rejected(self, store):
        assert store.add_aperture(aperture(7, (2.0, 0.0, 1.5)))
        assert not store.add_aperture(aperture(7, (9.0, 0.0, 1.5)))
        assert len(store.apertures) == 1

    def test_too_far_is_not_associated(self, store):
        store.add_aperture(aperture(1, (0.0, 0.0, 1.5)))
        index = store.detect(wall_qr((0.0, 0.7, 1.5), 'A'))
        assert store.aperture_for_qr(index) is None

    def test_floor_qr_is_never_associated(self, store):
        store.add_aperture(aperture(1, (0.0, 0.0, 0.5)))
        index = store.detect(Qr.observed((0.0, 0.1, 0.1), 'A', FLOOR_Z))
        assert store.aperture_for_qr(index) is None
        assert store.qr_for_aperture(1) is None

    def test_first_association_wins(self, store):
        """A second QR near an associated aperture stays unassociated."""
        store.add_aperture(aperture(1, (0.0, 0.0, 1.5)))
        first = store.detect(wall_qr((0.0, 0.5, 1.5), 'A'))
        second = store.detect(wall_qr((0.0, -0.4, 1.5), 'B'))
        assert store.aperture_for_qr(first).id == 1
        assert store.aperture_for_qr(second) is None
        assert store.qr_for_aperture(1) == first

    def test_nearest_aperture_is_chosen(self, store):
        store.add_aperture(aperture(1, (0.0, 0.0, 1.5)))
        store.add_aperture(aperture(2, (0.8, 0.0, 1.5)))
        index = store.detect(wall_qr((0.5, 0.0, 1.5), 'A'))
        assert store.aperture_for_qr(index).id == 2

    def test_find_connected(self, store):
        store.add_aperture(aperture(3, (1.0, 1.0, 1.5)))
        qr = wall_qr((1.0, 1.4, 1.5), 'A')
        store.detect(qr)
        assert store.find_connected_aperture(qr).id == 3
        assert store.find_connected_qr(store.apertures[0]) == 0
        assert store.find_connected_aperture(wall_qr((9.0, 9.0, 1.5), 'Z')) is None

    def test_aperture_with_content(self, store):
        store.add_aperture(aperture(5, (2.0, 0.0, 1.5)))
        index = store.detect(wall_qr((2.0, 0.3, 1.5), 'B'))
        hole, qr_index = store.aperture_with_content('B')
        assert hole.id == 5
        assert qr_index == index
        assert store.aperture_with_content('C') is None

    def test_find_connected_ignores_existing_association(self, store):
        """The unconstrained queries return an aperture already taken by another QR."""
        store.add_aperture(aperture(1, (0.0, 0.0, 1.5)))
        first = store.detect(wall_qr((0.0, 0.5, 1.5), 'A'))
        second_qr = wall_qr((0.0, -0.4, 1.5), 'B')
        second = store.detect(second_qr)
        assert store.aperture_for_qr(second) is None
        assert store.find_connected_aperture(second_qr).id == 1
        assert store.find_connected_qr(store.apertures[0]) == second
        assert store.qr_for_aperture(1) == first

    def test_floor_match_for_aperture(self, store):
        store.add_aperture(aperture(5, (2.0, 0.0, 1.5)))
        assert store.floor_match_for_aperture(5) is None
        store.detect(wall_qr((2.0, 0.3, 1.5), 'B'))
        assert store.floor_match_for_aperture(5) is None
        store.detect(floor_qr(0.0, 0.0, 'B'))
        assert store.floor_match_for_aperture(5).content == 'B'
        assert store.floor_match_for_aperture(6) is None


class TestRooms:
    """Test passed room bookkeeping."""

    def test_record_passed_room_clears_room_state(self, store):
        store.add_aperture(aperture(5, (2.0, 0.0, 1.5)))
        index = store.detect(wall_qr((2.0, 0.3, 1.5), 'A'))
        assert store.record_passed_room(index) == 'A'
        assert store.passed_rooms == ['A']
        assert store.qrs == []
        assert store.qr_for_aperture(5) is None
        assert [a.id for a in store.apertures] == [5]

    def test_match_with_passed_rooms(self, store):
        store.record_passed_room(store.detect(wall_qr((0.0, 0.0, 1.5), 'A')))
        store.record_passed_room(store.detect(wall_qr((5.0, 0.0, 1.5), 'B')))
        matching = store.detect(floor_qr(8.0, 0.0, 'AB'))
        other = store.detect(floor_qr(9.0, 0.0, 'BA'))
        assert store.match_qr_with_passed_rooms(matching).content == 'AB'
        assert store.match_qr_with_passed_rooms(other) is None

    def test_codes_seen_again_in_new_room_are_new(self, store):
        qr = floor_qr(0.0, 0.0, 'A')
        store.detect(qr)
        store.record_passed_room(0)
        assert store.detect(qr) == 0

    def test_detect_in_room_stamps_room(self, store):
        assert store.room == 0
        assert store.detect_in_room(wall_qr((0.0, 0.0, 1.5), 'A')) == (0, 0)
        assert store.detect_in_room(wall_qr((0.0, 0.0, 1.5), 'A')) is None
        store.record_passed_room(0)
        assert store.room == 1
        assert store.detect_in_room(floor_qr(3.0, 0.0, 'B')) == (0, 1)

    def test_lookups_after_room_change(self, store):
        """Indices recorded in a room that was left resolve to nothing."""
        store.add_aperture(aperture(1, (2.0, 0.0, 1.5)))
        store.detect(wall_qr((2.0, 0.3, 1.5), 'A'))
        index, room = store.detect_in_room(floor_qr(0.0, 0.0, 'ZZZ'))
        assert index == 1
        store.record_passed_room(0)

        assert store.match_qr_with_passed_rooms(index) is None
        assert store.match_qr_with_passed_rooms(index, room) is None
        assert store.aperture_for_qr(index, room) is None
        assert store.qr(index) is None
        assert store.record_passed_room(index) is None
        assert store.passed_rooms == ['A']

        store.detect(floor_qr(5.0, 0.0, 'A'))
        assert store.qr(0, room) is None
        assert store.match_qr_with_passed_rooms(0, room) is None
        assert store.match_qr_with_passed_rooms(0, store.room).content == 'A'
