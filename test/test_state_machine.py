#!/usr/bin/env python3
"""
test_state_machine.py - Unit tests for MissionStateMachine

Tests table lookup, protocol errors, the terminal error state,
callbacks, history and concurrent apply().
"""

import threading
from dataclasses import dataclass
from enum import Enum, auto
from unittest.mock import MagicMock

import pytest

from task_manager.events import Event, Failure, FailureKind, Start
from task_manager.state_machine import (
    Effect,
    MissionStateMachine,
    Transition,
    TransitionTable,
)


class S(Enum):
    IDLE = auto()
    RUNNING = auto()
    DONE = auto()
    ERROR = auto()


class Act(Enum):
    GO = auto()
    STOP = auto()


@dataclass(frozen=True)
class Tick(Event):
    pass


@dataclass(frozen=True)
class Finish(Event):
    ok: bool = True


def make_table():
    return TransitionTable({
        (S.IDLE, Start): Transition(S.RUNNING, (Effect(Act.GO),)),
        (S.RUNNING, Tick): S.RUNNING,
        (S.RUNNING, Finish): lambda event: (
            Transition(S.DONE, (Effect(Act.STOP, ('ok',)),)) if event.ok else Transition(S.IDLE)
        ),
        (S.RUNNING, Failure): Transition(S.DONE, (Effect(Act.STOP, ('failure',)),)),
    })


def make_machine(**kwargs):
    return MissionStateMachine(make_table(), S.IDLE, S.ERROR, name='test', **kwargs)


class TestTransitionTable:
    """Test rule lookup."""

    def test_target_state_rule(self):
        table = make_table()
        assert table.next(S.RUNNING, Tick()) == Transition(S.RUNNING)

    def test_callable_rule_branches_on_event(self):
        table = make_table()
        assert table.next(S.RUNNING, Finish(ok=True)).state == S.DONE
        assert table.next(S.RUNNING, Finish(ok=False)).state == S.IDLE

    def test_missing_rule(self):
        assert make_table().next(S.IDLE, Tick()) is None

    def test_events_for_state(self):
        table = make_table()
        assert table.events_for(S.RUNNING) == {Tick, Finish, Failure}
        assert table.handles(S.IDLE, Start)
        assert not table.handles(S.DONE, Start)


class TestApply:
    """Test applying events."""

    def test_initial_state(self):
        assert make_machine().state == S.IDLE

    def test_transition_with_effects(self):
        sm = make_machine()
        record = sm.apply(Start())
        assert sm.state == S.RUNNING
        assert record.old_state == S.IDLE
        assert record.new_state == S.RUNNING
        assert record.effects == (Effect(Act.GO),)
        assert not record.protocol_error

    def test_failure_event(self):
        sm = make_machine()
        sm.apply(Start())
        record = sm.apply(Failure(FailureKind.TIMEOUT))
        assert sm.state == S.DONE
        assert record.effects == (Effect(Act.STOP, ('failure',)),)
        assert record.event.name == 'Timeout'

    def test_unhandled_event_is_protocol_error(self):
        """An event with no table entry moves the machine to the error state."""
        sm = make_machine()
        record = sm.apply(Tick())
        assert record.protocol_error
        assert record.effects == ()
        assert sm.state == S.ERROR
        assert sm.is_failed()

    def test_error_state_is_terminal(self):
        sm = make_machine()
        sm.apply(Tick())
        assert sm.apply(Start()) is None
        assert sm.state == S.ERROR

    def test_callback_receives_record(self):
        callback = MagicMock()
        sm = make_machine(on_transition=callback)
        record = sm.apply(Start())
        callback.assert_called_once_with(record)

    def test_callback_not_called_in_terminal_state(self):
        callback = MagicMock()
        sm = make_machine(on_transition=callback)
        sm.apply(Tick())
        callback.reset_mock()
        sm.apply(Start())
        callback.assert_not_called()

    def test_callback_can_read_state(self):
        """Callbacks run after the lock is released."""
        seen = []
        sm = None

        def callback(record):
            seen.append(sm.state)

        sm = make_machine(on_transition=callback)
        sm.apply(Start())
        assert seen == [S.RUNNING]

    def test_callback_can_apply_events(self):
        """A callback applying another event does not deadlock."""
        sm = None

        def callback(record):
            if record.new_state == S.RUNNING and record.old_state == S.IDLE:
                sm.apply(Finish())

        sm = make_machine(on_transition=callback)
        sm.apply(Start())
        assert sm.state == S.DONE


class TestHistory:
    """Test transition history."""

    def test_history_records_transitions(self):
        sm = make_machine()
        sm.apply(Start())
        sm.apply(Tick())
        history = sm.get_transition_history()
        assert [(r.old_state, r.new_state) for r in history] == [
            (S.IDLE, S.RUNNING),
            (S.RUNNING, S.RUNNING),
        ]

    def test_history_is_bounded(self):
        sm = make_machine()
        sm.apply(Start())
        for _ in range(150):
            sm.apply(Tick())
        assert len(sm.get_transition_history()) == 100


class TestConcurrency:
    """Test apply() from many threads."""

    def test_concurrent_toggles_chain(self):
        """Every applied transition starts from the state the previous one produced."""

        class Light(Enum):
            OFF = auto()
            ON = auto()
            ERROR = auto()

        table = TransitionTable({
            (Light.OFF, Tick): Light.ON,
            (Light.ON, Tick): Light.OFF,
        })
        sm = MissionStateMachine(table, Light.OFF, Light.ERROR)
        barrier = threading.Barrier(10)

        def worker():
            barrier.wait()
            for _ in range(5):
                sm.apply(Tick())

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)

        history = sm.get_transition_history()
        assert len(history) == 50
        assert sm.state == Light.OFF
        for previous, current in zip(history, history[1:]):
            assert previous.new_state == current.old_state

    def test_racing_events_never_corrupt_state(self):
        """A late event inapplicable to the resulting state goes to error, not a crash."""
        sm = make_machine()
        sm.apply(Start())
        threads = [
            threading.Thread(target=sm.apply, args=(Finish(),)),
            threading.Thread(target=sm.apply, args=(Finish(),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)
        assert sm.state == S.ERROR
        assert [r.new_state for r in sm.get_transition_history()] == [S.RUNNING, S.DONE, S.ERROR]


@pytest.mark.parametrize('kind, name', [
    (FailureKind.LOW_VOLTAGE_DETECTED, 'LowVoltageDetected'),
    (FailureKind.TIMEOUT, 'Timeout'),
])
def test_failure_names(kind, name):
    assert Failure(kind).name == name


def test_event_name_is_class_name():
    assert Tick().name == 'Tick'
