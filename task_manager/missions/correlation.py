"""
correlation.py - QR code and aperture bookkeeping for the QR maze mission

Keeps the QR codes seen in the current room, every aperture reported by
perception, a one-to-one association between wall QR codes and nearby
apertures, and the labels of the rooms already passed.

Thread Safety:
    The store has its own lock. Every method copies what it needs and
    releases the lock before returning; it never calls out while holding it.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

from task_manager.config import QrMazeConfig
from task_manager.geometry import DetectedObject, distance, nearest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Qr:
    """QR code observation in the map frame."""
    position: tuple[float, float, float]
    content: str
    is_on_floor: bool = False

    @classmethod
    def observed(cls, position: Sequence[float], content: str, max_floor_z: float) -> 'Qr':
        """Build a Qr, tagging it as painted on the floor when z < max_floor_z."""
        point = tuple(float(v) for v in position)
        return cls(position=point, content=content, is_on_floor=point[2] < max_floor_z)


class CorrelationStore:
    """Correlation of QR codes with apertures for one mission run."""

    def __init__(self, config: QrMazeConfig):
        self._config = config
        self._lock = threading.Lock()
        self._qrs: list[Qr] = []
        self._apertures: dict[int, DetectedObject] = {}
        self._qr_to_aperture: dict[int, int] = {}
        self._aperture_to_qr: dict[int, int] = {}
        self._passed_rooms: list[str] = []

    # -- QR codes ----------------------------------------------------------

    def _is_duplicate(self, qr: Qr) -> bool:
        if qr.is_on_floor and len(qr.content) <= self._config.max_floor_content_length:
            return any(known.is_on_floor and known.content == qr.content for known in self._qrs)
        return any(
            distance(known.position, qr.position) <= self._config.max_qr_distance_tolerance
            for known in self._qrs
        )

    def detect_in_room(self, qr: Qr) -> Optional[tuple[int, int]]:
        """
        Record `qr` unless it was already seen.

        A new wall QR is associated with the nearest unassociated aperture
        within `max_association_distance`.

        Returns:
            (index, room) of the newly recorded QR, or None for a duplicate
        """
        with self._lock:
            if self._is_duplicate(qr):
                return None
            index = len(self._qrs)
            room = len(self._passed_rooms)
            self._qrs.append(qr)
            if not qr.is_on_floor:
                aperture = self._nearest_aperture(qr)
                if aperture is not None:
                    self._associate(index, aperture.id)
        logger.info(f'New QR code #{index} in room {room}: {qr.content!r} at {qr.position}')
        return index, room

    def detect(self, qr: Qr) -> Optional[int]:
        """Record `qr` unless it was already seen; returns its index or None."""
        recorded = self.detect_in_room(qr)
        return None if recorded is None else recorded[0]

    def is_already_detected(self, qr: Qr) -> bool:
        """True if `qr` was seen before; records it otherwise."""
        return self.detect(qr) is None

    def qr(self, index: int, room: Optional[int] = None) -> Optional[Qr]:
        """QR at `index`, or None if the index is stale or `room` has been left."""
        with self._lock:
            if not self._is_current(index, room):
                return None
            return self._qrs[index]

    def _is_current(self, index: int, room: Optional[int]) -> bool:
        if room is not None and room != len(self._passed_rooms):
            return False
        return 0 <= index < len(self._qrs)

    @property
    def room(self) -> int:
        """Number of the current room (count of passed rooms)."""
        with self._lock:
            return len(self._passed_rooms)

    @property
    def qrs(self) -> list[Qr]:
        with self._lock:
            return self._qrs.copy()

    def floor_qr_with_content(self, content: str) -> Optional[int]:
        """Index of the first floor QR carrying `content`."""
        with self._lock:
            for index, known in enumerate(self._qrs):
                if known.is_on_floor and known.content == content:
                    return index
        return None

    # -- Apertures ---------------------------------------------------------

    def add_aperture(self, aperture: DetectedObject) -> bool:
        """
        Record an aperture (mission frame convention).

        The aperture is associated with the nearest unassociated wall QR
        within `max_association_distance`.

        Returns:
            False if an aperture with this id is already known
        """
        with self._lock:
            if aperture.id in self._apertures:
                return False
            self._apertures[aperture.id] = aperture
            qr_index = self._nearest_qr(aperture)
            if qr_index is not None:
                self._associate(qr_index, aperture.id)
        return True

    @property
    def apertures(self) -> list[DetectedObject]:
        with self._lock:
            return list(self._apertures.values())

    # -- Associations ------------------------------------------------------

    def _nearest_aperture(self, qr: Qr) -> Optional[DetectedObject]:
        candidates = [a for a in self._apertures.values() if a.id not in self._aperture_to_qr]
        index = nearest(
            qr.position,
            [a.pose.position for a in candidates],
            self._config.max_association_distance,
        )
        return None if index is None else candidates[index]

    def _nearest_qr(self, aperture: DetectedObject) -> Optional[int]:
        candidates = [
            i for i, known in enumerate(self._qrs)
            if not known.is_on_floor and i not in self._qr_to_aperture
        ]
        index = nearest(
            aperture.pose.position,
            [self._qrs[i].position for i in candidates],
            self._config.max_association_distance,
        )
        return None if index is None else candidates[index]

    def _associate(self, qr_index: int, aperture_id: int) -> None:
        self._qr_to_aperture[qr_index] = aperture_id
        self._aperture_to_qr[aperture_id] = qr_index
        logger.debug(f'QR #{qr_index} is associated with aperture {aperture_id}')

    def find_connected_aperture(self, qr: Qr) -> Optional[DetectedObject]:
        """
        Nearest known aperture within `max_association_distance` of `qr`.

        Unconstrained query: existing associations are ignored, so the result
        may already belong to another QR. The mission uses aperture_for_qr().
        """
        with self._lock:
            index = nearest(
                qr.position,
                [a.pose.position for a in self._apertures.values()],
                self._config.max_association_distance,
            )
            return None if index is None else list(self._apertures.values())[index]

    def find_connected_qr(self, aperture: DetectedObject) -> Optional[int]:
        """
        Index of the nearest QR within `max_association_distance` of `aperture`.

        Unconstrained query: floor codes and existing associations are not
        excluded. The mission uses qr_for_aperture().
        """
        with self._lock:
            return nearest(
                aperture.pose.position,
                [known.position for known in self._qrs],
                self._config.max_association_distance,
            )

    def aperture_for_qr(self, qr_index: int, room: Optional[int] = None) -> Optional[DetectedObject]:
        with self._lock:
            if not self._is_current(qr_index, room):
                return None
            aperture_id = self._qr_to_aperture.get(qr_index)
            return None if aperture_id is None else self._apertures[aperture_id]

    def qr_for_aperture(self, aperture_id: int) -> Optional[int]:
        with self._lock:
            return self._aperture_to_qr.get(aperture_id)

    def floor_match_for_aperture(self, aperture_id: int) -> Optional[Qr]:
        """
        Floor QR whose content equals the wall QR associated with `aperture_id`.

        Returns:
            None if the aperture has no associated wall QR or no floor QR matches
        """
        with self._lock:
            qr_index = self._aperture_to_qr.get(aperture_id)
            if qr_index is None:
                return None
            content = self._qrs[qr_index].content
            for known in self._qrs:
                if known.is_on_floor and known.content == content:
                    return known
        return None

    def aperture_with_content(self, content: str) -> Optional[tuple[DetectedObject, int]]:
        """First (aperture, wall QR index) pair whose QR carries `content`."""
        with self._lock:
            for qr_index, known in enumerate(self._qrs):
                if known.is_on_floor or known.content != content:
                    continue
                aperture_id = self._qr_to_aperture.get(qr_index)
                if aperture_id is not None:
                    return self._apertures[aperture_id], qr_index
        return None

    # -- Rooms -------------------------------------------------------------

    @property
    def passed_rooms(self) -> list[str]:
        with self._lock:
            return self._passed_rooms.copy()

    def match_qr_with_passed_rooms(self, qr_index: int, room: Optional[int] = None) -> Optional[Qr]:
        """
        The QR at `qr_index` if its content equals the concatenated passed room labels.

        None when the index is stale or `room` is no longer the current room.
        """
        with self._lock:
            if not self._is_current(qr_index, room):
                return None
            qr = self._qrs[qr_index]
            if qr.content == ''.join(self._passed_rooms):
                return qr
        return None

    def record_passed_room(self, qr_index: int) -> Optional[str]:
        """
        Record the room labelled by QR `qr_index` as passed and start a new room.

        Clears the QR list and all associations; known apertures are kept.

        Returns:
            The room label, or None if `qr_index` is out of range
        """
        with self._lock:
            if not self._is_current(qr_index, None):
                logger.warning(f'Cannot record passed room: no QR #{qr_index}')
                return None
            label = self._qrs[qr_index].content
            self._passed_rooms.append(label)
            self._qrs.clear()
            self._qr_to_aperture.clear()
            self._aperture_to_qr.clear()
            rooms = ''.join(self._passed_rooms)
        logger.info(f'Room {label!r} passed, rooms so far: {rooms!r}')
        return label
