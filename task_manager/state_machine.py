"""
state_machine.py - Generic event-driven state machine for missions

Each mission type supplies a TransitionTable mapping
(current state, event type) to a Transition: the next state plus the
effects (side effects described as data) the mission must perform.

    table = TransitionTable({
        (State.IDLE, Start): State.RUNNING,
        (State.RUNNING, Failure): lambda event: Transition(State.LANDING, (Effect(Act.LAND),)),
    })

An event with no table entry for the current state is a protocol error:
the machine moves to its designated error state, which is terminal.

Thread Safety:
    One lock guards the current state and is held only to read or swap
    it. Transitions are computed outside the lock and applied with a
    compare-and-swap; if another event advanced the state in the
    meantime the transition is recomputed against the new state. Lock
    order is apply order. Callbacks run after the lock is released.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from task_manager.events import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Effect:
    """Side effect requested by a transition, interpreted by the mission."""
    kind: Enum
    args: tuple = ()


@dataclass(frozen=True)
class Transition:
    """Result of looking up (state, event) in a transition table."""
    state: Enum
    effects: tuple[Effect, ...] = ()


Rule = Union[Enum, Transition, Callable[[Any], Transition]]


class TransitionTable:
    """
    Fixed mapping from (state, event type) to a rule.

    A rule is either a target state, a ready Transition, or a callable
    taking the event and returning a Transition (for branching rules).
    Mapping a state to itself is an explicit "no change".
    """

    def __init__(self, rules: dict[tuple[Enum, type], Rule]):
        self._rules = dict(rules)

    def next(self, state: Enum, event: Event) -> Optional[Transition]:
        """Return the transition for `event` in `state`, or None if none exists."""
        rule = self._rules.get((state, type(event)))
        if rule is None:
            return None
        if isinstance(rule, Transition):
            return rule
        if isinstance(rule, Enum):
            return Transition(rule)
        return rule(event)

    def handles(self, state: Enum, event_type: type) -> bool:
        return (state, event_type) in self._rules

    def events_for(self, state: Enum) -> set[type]:
        """Event types accepted in `state`."""
        return {event_type for (s, event_type) in self._rules if s == state}


@dataclass(frozen=True)
class TransitionRecord:
    """One applied transition, as reported to callbacks and history."""
    old_state: Enum
    new_state: Enum
    event: Event
    effects: tuple[Effect, ...] = ()
    protocol_error: bool = False


class MissionStateMachine:
    """
    Holds the single current state of one mission.

    Event producers only ever call apply(); they never hold the state.

    Attributes:
        state: Current state (thread-safe read)
        error_state: Terminal state entered on protocol errors
    """

    def __init__(
        self,
        table: TransitionTable,
        initial_state: Enum,
        error_state: Enum,
        on_transition: Optional[Callable[[TransitionRecord], None]] = None,
        name: str = 'mission',
    ):
        """
        Initialize the state machine.

        Args:
            table: Transition table for this mission type
            initial_state: State before any event
            error_state: Terminal state for events with no table entry
            on_transition: Optional callback invoked after each applied transition
            name: Mission name used in log messages
        """
        self._table = table
        self._state = initial_state
        self._error_state = error_state
        self._on_transition = on_transition
        self._name = name
        self._lock = threading.Lock()

        # Transition history for debugging
        self._transition_history: list[TransitionRecord] = []
        self._max_history = 100

    @property
    def state(self) -> Enum:
        """Return current state (thread-safe)."""
        with self._lock:
            return self._state

    @property
    def error_state(self) -> Enum:
        return self._error_state

    @property
    def table(self) -> TransitionTable:
        return self._table

    def is_failed(self) -> bool:
        """True once a protocol error has moved the mission to its error state."""
        return self.state == self._error_state

    def apply(self, event: Event) -> Optional[TransitionRecord]:
        """
        Apply `event` to the current state.

        Returns:
            The applied TransitionRecord, or None if the machine was already
            in its terminal error state
        """
        while True:
            with self._lock:
                current = self._state

            if current == self._error_state:
                logger.warning(
                    f'{self._name}: ignoring {event.name} in terminal state {current.name}'
                )
                return None

            transition = self._table.next(current, event)
            protocol_error = transition is None
            if protocol_error:
                transition = Transition(self._error_state)

            with self._lock:
                if self._state != current:
                    # Another event won the race; recompute against the new state
                    continue
                self._state = transition.state
                record = TransitionRecord(
                    old_state=current,
                    new_state=transition.state,
                    event=event,
                    effects=transition.effects,
                    protocol_error=protocol_error,
                )
                self._transition_history.append(record)
                if len(self._transition_history) > self._max_history:
                    self._transition_history.pop(0)
            break

        if protocol_error:
            logger.critical(
                f'{self._name}: no transition for {event.name} in state {current.name}; '
                f'mission moved to {self._error_state.name}'
            )
        else:
            logger.debug(f'{self._name}: {current.name} --{event.name}--> {transition.state.name}')

        # Invoke callback outside lock to prevent deadlocks
        if self._on_transition:
            self._on_transition(record)

        return record

    def get_transition_history(self) -> list[TransitionRecord]:
        """Return recent transition history for debugging."""
        with self._lock:
            return self._transition_history.copy()

    def __repr__(self) -> str:
        with self._lock:
            return f'MissionStateMachine(name={self._name}, state={self._state.name})'
