"""
events.py - Domain events shared by all missions

Mission-specific events live next to their transition tables in
task_manager.missions. Events are immutable; `name` is what gets logged
and published on the events topic.
"""

from dataclasses import dataclass
from enum import Enum


class FailureKind(Enum):
    """Conditions that prevent the mission from completing normally."""
    LOW_VOLTAGE_DETECTED = 'LowVoltageDetected'
    TIMEOUT = 'Timeout'


@dataclass(frozen=True)
class Event:
    """Base class for everything fed into a mission state machine."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class Start(Event):
    """Operator command that starts the mission."""


@dataclass(frozen=True)
class Failure(Event):
    """Low battery or mission timeout."""
    kind: FailureKind

    @property
    def name(self) -> str:
        return self.kind.value
