"""
base.py - Common runtime for all mission types

A Mission owns one MissionStateMachine, the CancellationToken shared by
its watchers, and two single-worker executors for transition effects:
the stage lane runs long actions (takeoff, spins, goals) in the order
they were produced, the failsafe lane runs the actions listed in
FAILSAFE_ACTIONS and never waits for the stage lane. Subclasses provide
the transition table, human-readable state descriptions and the effect
handlers.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from task_manager.cancellation import CancellationToken
from task_manager.config import TaskManagerConfig
from task_manager.events import Event, Failure, FailureKind
from task_manager.interfaces import MissionServices
from task_manager.state_machine import (
    Effect,
    MissionStateMachine,
    TransitionRecord,
    TransitionTable,
)
from task_manager.telemetry import MissionCancelled
from task_manager.watchers import BatteryWatchdog, MissionTimer, PollingWatcher

logger = logging.getLogger(__name__)


class Mission:
    """
    Base class for the three mission types.

    Class attributes set by subclasses:
        NAME: Mission name used in logs and thread names
        INITIAL_STATE: State before Start
        ERROR_STATE: Terminal state for protocol errors
        STATUS_TEXT: State -> status line published on every change
        USES_WATCHDOGS: Whether battery and timer watchdogs guard the mission
        FAILSAFE_ACTIONS: Effect kinds run on the failsafe lane
    """

    NAME = 'mission'
    INITIAL_STATE: Enum
    ERROR_STATE: Enum
    STATUS_TEXT: dict = {}
    USES_WATCHDOGS = True
    FAILSAFE_ACTIONS: frozenset = frozenset()

    def __init__(
        self,
        config: TaskManagerConfig,
        services: MissionServices,
        token: Optional[CancellationToken] = None,
    ):
        self.config = config
        self.services = services
        self.token = token or CancellationToken()

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f'{self.NAME}_effects')
        self._failsafe_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f'{self.NAME}_failsafe'
        )
        self._pending = 0
        self._idle = threading.Condition()
        self._closed = False

        self._watchers: list[PollingWatcher] = []
        self._watchers_lock = threading.Lock()

        self._event_log: list[str] = []
        self._event_log_lock = threading.Lock()

        self._handlers = self.effect_handlers()
        self._engine = MissionStateMachine(
            self.build_table(),
            initial_state=self.INITIAL_STATE,
            error_state=self.ERROR_STATE,
            on_transition=self._on_transition,
            name=self.NAME,
        )
        self._report_state(self.INITIAL_STATE, is_error=False)

    # -- To be provided by subclasses -------------------------------------

    def build_table(self) -> TransitionTable:
        raise NotImplementedError

    def effect_handlers(self) -> dict[Enum, Callable[..., None]]:
        raise NotImplementedError

    # -- State and events --------------------------------------------------

    @property
    def state(self) -> Enum:
        return self._engine.state

    @property
    def engine(self) -> MissionStateMachine:
        return self._engine

    @property
    def event_log(self) -> list[str]:
        with self._event_log_lock:
            return self._event_log.copy()

    def is_in(self, state: Enum) -> bool:
        """True while the mission is in `state` and not cancelled."""
        return not self.token.cancelled and self._engine.state == state

    def apply(self, event: Event) -> Optional[TransitionRecord]:
        """Report `event` and feed it to the state machine."""
        logger.info(f'Event {event.name} is created.')
        with self._event_log_lock:
            self._event_log.append(event.name)
        self.services.reporter.publish_event(event.name)
        return self._engine.apply(event)

    def raise_failure(self, kind: FailureKind) -> Optional[TransitionRecord]:
        """Cancel the mission token (first failure only) and apply the Failure event."""
        if self.token.cancel(kind.value):
            logger.warning(f'{self.NAME}: mission cancelled by {kind.value}')
        return self.apply(Failure(kind))

    def _report_state(self, state: Enum, is_error: bool) -> None:
        text = self.STATUS_TEXT.get(state, f'Drone state is {state.name}')
        if is_error:
            logger.critical(text)
        else:
            logger.info(text)
        self.services.reporter.publish_status(text, is_error)

    def _on_transition(self, record: TransitionRecord) -> None:
        self._report_state(
            record.new_state,
            is_error=record.protocol_error or record.new_state == self.ERROR_STATE,
        )
        for effect in record.effects:
            self._submit(effect)

    # -- Effects -----------------------------------------------------------

    def _submit(self, effect: Effect) -> None:
        with self._idle:
            if self._closed:
                logger.debug(f'{self.NAME}: dropping {effect.kind.name} after shutdown')
                return
            self._pending += 1
            if effect.kind in self.FAILSAFE_ACTIONS:
                self._failsafe_executor.submit(self._run_effect, effect)
            else:
                self._executor.submit(self._run_effect, effect)

    def _run_effect(self, effect: Effect) -> None:
        try:
            handler = self._handlers.get(effect.kind)
            if handler is None:
                logger.error(f'{self.NAME}: no handler for effect {effect.kind.name}')
                return
            handler(*effect.args)
        except MissionCancelled:
            logger.debug(f'{self.NAME}: effect {effect.kind.name} interrupted by cancellation')
        except Exception:
            logger.exception(f'{self.NAME}: effect {effect.kind.name} failed')
        finally:
            with self._idle:
                self._pending -= 1
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted effect (including ones they trigger) has run."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    # -- Watchers ----------------------------------------------------------

    def start_watcher(self, watcher: PollingWatcher) -> Optional[PollingWatcher]:
        """
        Start and register `watcher`.

        Refused (returns None) once the mission token is cancelled, so every
        registered watcher has been started before join() can see it.
        """
        with self._watchers_lock:
            if self.token.cancelled:
                logger.debug(f'{self.NAME}: not starting {watcher.name}, mission is cancelled')
                return None
            watcher.start()
            self._watchers.append(watcher)
        return watcher

    @property
    def watchers(self) -> list[PollingWatcher]:
        with self._watchers_lock:
            return self._watchers.copy()

    def start_watchdogs(self) -> None:
        """Start the battery watchdog and the mission timer."""
        self.start_watcher(BatteryWatchdog(
            self.services.telemetry,
            self.config.min_battery_voltage,
            lambda: self.raise_failure(FailureKind.LOW_VOLTAGE_DETECTED),
            self.config.battery_check_hz,
            self.token,
        ))
        self.start_watcher(MissionTimer(
            self.config.mission_timeout_minutes,
            lambda: self.raise_failure(FailureKind.TIMEOUT),
            self.config.timer_check_hz,
            self.token,
        ))

    def join(self, timeout: float = 2.0) -> bool:
        """Join all watchers; returns True if every one of them has exited."""
        for watcher in self.watchers:
            watcher.join(timeout)
        return not any(watcher.is_alive() for watcher in self.watchers)

    def shutdown(self, timeout: float = 2.0) -> None:
        """Cancel the mission, join its watchers and stop accepting effects."""
        self.token.cancel('shutdown')
        if not self.join(timeout):
            logger.warning(f'{self.NAME}: some watchers did not stop within {timeout}s')
        with self._idle:
            self._closed = True
        self._executor.shutdown(wait=False)
        self._failsafe_executor.shutdown(wait=False)

    def __repr__(self) -> str:
        return f'{type(self).__name__}(state={self.state.name}, token={self.token!r})'
