"""Crossing Controller Backend module.

This module provides the core safety logic for a train/car level crossing:
the crossing phase state machine, the lazily evaluated free-to-cross and
pre-locked timers, train authorization and the car capacity limit.

All time-driven transitions are resolved when the next request arrives.
Nothing runs in the background, so the reported phase may lag behind the
clock until somebody talks to the controller.
"""

from __future__ import annotations

import logging
import os
import sys
from collections import deque
from typing import Any, Callable, Deque, Dict, FrozenSet, Hashable, List, Optional, Set

_PKG_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if _PKG_ROOT not in sys.path:
    sys.path.append(_PKG_ROOT)

from universal.global_clock import GlobalClock
from universal.global_clock import clock as global_clock
from universal.universal import CrossingEvent, CrossingEventType, CrossingState

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

EVENT_HISTORY_SIZE = 256


class CrossingException(Exception):
    """Base class for rejected crossing requests."""


class NotOperatorError(CrossingException, PermissionError):
    """Raised when a non-operator calls an operator-only operation."""

    def __init__(self, message: str = 'Only infrastructure can perform this action.') -> None:
        super().__init__(message)


class NotAuthorizedTrainError(CrossingException, PermissionError):
    """Raised when an unknown identity requests a train crossing."""

    def __init__(self, message: str = 'Not authorized train.') -> None:
        super().__init__(message)


class NotFreeToCrossError(CrossingException):
    """Raised when a car asks to cross outside the free-to-cross phase."""

    def __init__(self, message: str = 'Crossing is not free to cross.') -> None:
        super().__init__(message)


class CrossingFullError(CrossingException):
    """Raised when every car slot is already taken."""

    def __init__(self, message: str = 'Crossing is full.') -> None:
        super().__init__(message)


def _positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f'{name} must be a positive integer, got {value!r}')
    return value


class CrossingControllerBackend:
    """Level crossing safety controller.

    Mediates mutually exclusive access between authorized trains and a
    bounded number of cars. Cars only get permission while the crossing is
    FREE_TO_CROSS; a train is told to stop when cars overstay the
    pre-locked grace period.

    Every public operation takes the calling identity as ``caller``.
    Calls are expected to be serialized by the host.
    """

    def __init__(
        self,
        free_to_cross_duration: int,
        max_cars: int,
        pre_locked_duration: int,
        infrastructure: Hashable,
        clock: Optional[GlobalClock] = None,
        history_size: int = EVENT_HISTORY_SIZE,
    ) -> None:
        """Deploy a crossing controller.

        Args:
            free_to_cross_duration: Seconds a FREE_TO_CROSS phase stays valid.
            max_cars: Maximum number of cars holding permission at once.
            pre_locked_duration: Grace period in seconds for cars to clear.
            infrastructure: Identity of the deploying operator.
            clock: Time source; defaults to the shared simulation clock.
            history_size: Number of recent events kept in event_history.

        Raises:
            ValueError: If a duration or the capacity is not a positive integer.
        """
        self._free_to_cross_duration = _positive_int(
            'free_to_cross_duration', free_to_cross_duration
        )
        self._max_cars = _positive_int('max_cars', max_cars)
        self._pre_locked_duration = _positive_int(
            'pre_locked_duration', pre_locked_duration
        )
        if infrastructure is None:
            raise ValueError('infrastructure identity is required')
        self._infrastructure = infrastructure
        self.clock = clock if clock is not None else global_clock

        self._state = CrossingState.LOCKED
        self._free_to_cross_since = 0
        self._pre_locked_since = 0
        self._authorized_trains: Set[Hashable] = set()
        self._cars_with_permission: Set[Hashable] = set()

        self._listeners: List[Callable[[CrossingEvent], None]] = []
        self.event_history: Deque[CrossingEvent] = deque(maxlen=history_size)

        logger.info(
            'Crossing deployed by %s (free_to_cross=%ds, max_cars=%d, '
            'pre_locked=%ds)',
            infrastructure,
            free_to_cross_duration,
            max_cars,
            pre_locked_duration,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def state(self) -> CrossingState:
        return self._state

    @property
    def infrastructure(self) -> Hashable:
        return self._infrastructure

    @property
    def free_to_cross_duration(self) -> int:
        return self._free_to_cross_duration

    @property
    def max_cars(self) -> int:
        return self._max_cars

    @property
    def pre_locked_duration(self) -> int:
        return self._pre_locked_duration

    @property
    def free_to_cross_since(self) -> int:
        return self._free_to_cross_since

    @property
    def pre_locked_since(self) -> int:
        return self._pre_locked_since

    @property
    def authorized_trains(self) -> FrozenSet[Hashable]:
        return frozenset(self._authorized_trains)

    @property
    def cars_with_permission(self) -> FrozenSet[Hashable]:
        return frozenset(self._cars_with_permission)

    @property
    def car_count(self) -> int:
        return len(self._cars_with_permission)

    def is_authorized_train(self, identity: Hashable) -> bool:
        return identity in self._authorized_trains

    def has_car_permission(self, identity: Hashable) -> bool:
        return identity in self._cars_with_permission

    def free_to_cross_remaining(self) -> int:
        """Seconds left in the free-to-cross window, 0 outside of it.

        Reads the clock without resolving the phase.
        """
        if self._state is not CrossingState.FREE_TO_CROSS:
            return 0
        deadline = self._free_to_cross_since + self._free_to_cross_duration
        return max(0, deadline - self.clock.timestamp())

    def pre_locked_remaining(self) -> int:
        """Seconds left in the grace period, 0 outside of it."""
        if self._state is not CrossingState.PRE_LOCKED:
            return 0
        deadline = self._pre_locked_since + self._pre_locked_duration
        return max(0, deadline - self.clock.timestamp())

    # ------------------------------------------------------------------
    # Operator operations
    # ------------------------------------------------------------------
    def _require_infrastructure(self, caller: Hashable, action: str) -> None:
        if caller != self._infrastructure:
            logger.warning('%s rejected for %s: not infrastructure', action, caller)
            raise NotOperatorError()

    def authorize_train(self, caller: Hashable, train: Hashable) -> None:
        """Allow ``train`` to request crossings.

        Raises:
            NotOperatorError: If caller is not the infrastructure operator.
        """
        self._require_infrastructure(caller, 'authorize_train')
        if train in self._authorized_trains:
            logger.debug('Train %s already authorized', train)
            return
        self._authorized_trains.add(train)
        logger.info('Train %s authorized', train)

    def deauthorize_train(self, caller: Hashable, train: Hashable) -> None:
        """Revoke a train's authorization.

        A train already crossing is not interrupted; only its future
        requests are rejected.

        Raises:
            NotOperatorError: If caller is not the infrastructure operator.
        """
        self._require_infrastructure(caller, 'deauthorize_train')
        if train not in self._authorized_trains:
            logger.debug('Train %s was not authorized', train)
            return
        self._authorized_trains.discard(train)
        logger.info('Train %s deauthorized', train)

    def update_free_to_cross_state(self, caller: Hashable) -> None:
        """Manually reset the crossing to FREE_TO_CROSS and restart its timer.

        Raises:
            NotOperatorError: If caller is not the infrastructure operator.
        """
        self._require_infrastructure(caller, 'update_free_to_cross_state')
        previous = self._state
        self._state = CrossingState.FREE_TO_CROSS
        self._free_to_cross_since = self.clock.timestamp()
        logger.info(
            'Crossing state %s -> %s at t=%d',
            previous.name,
            self._state.name,
            self._free_to_cross_since,
        )

    # ------------------------------------------------------------------
    # Lazy timers
    # ------------------------------------------------------------------
    def check_free_to_cross_timer(self) -> None:
        """Lock the crossing if the free-to-cross window has expired."""
        if self._state is not CrossingState.FREE_TO_CROSS:
            return
        now = self.clock.timestamp()
        if now > self._free_to_cross_since + self._free_to_cross_duration:
            logger.info(
                'Free-to-cross window expired (since t=%d, now t=%d)',
                self._free_to_cross_since,
                now,
            )
            self.lock_crossing()

    def lock_crossing(self) -> None:
        """Leave FREE_TO_CROSS.

        Goes to PRE_LOCKED while any car still holds permission so the grace
        period starts, otherwise straight to LOCKED.
        """
        previous = self._state
        if self._cars_with_permission:
            if previous is not CrossingState.PRE_LOCKED:
                self._pre_locked_since = self.clock.timestamp()
            self._state = CrossingState.PRE_LOCKED
        else:
            self._state = CrossingState.LOCKED
        if previous is not self._state:
            logger.info(
                'Crossing state %s -> %s (%d car(s) holding permission)',
                previous.name,
                self._state.name,
                len(self._cars_with_permission),
            )

    def advance_if_expired(self) -> None:
        """Resolve every time- or population-driven transition that is due."""
        self.check_free_to_cross_timer()
        if (
            self._state is CrossingState.PRE_LOCKED
            and not self._cars_with_permission
        ):
            self.lock_crossing()

    # ------------------------------------------------------------------
    # Car operations
    # ------------------------------------------------------------------
    def request_car_permission(self, caller: Hashable) -> None:
        """Grant ``caller`` permission to drive over the crossing.

        Raises:
            NotFreeToCrossError: If the crossing is not FREE_TO_CROSS
                (including a window that has just expired).
            CrossingFullError: If max_cars cars already hold permission.
        """
        self.advance_if_expired()
        if self._state is not CrossingState.FREE_TO_CROSS:
            logger.warning(
                'Car %s rejected: crossing is %s', caller, self._state.name
            )
            raise NotFreeToCrossError()
        if len(self._cars_with_permission) >= self._max_cars:
            logger.warning(
                'Car %s rejected: crossing full (%d/%d)',
                caller,
                len(self._cars_with_permission),
                self._max_cars,
            )
            raise CrossingFullError()
        self._cars_with_permission.add(caller)
        self._emit(CrossingEventType.CAR_PERMISSION_GRANTED, caller)

    def release_car_permission(self, caller: Hashable) -> None:
        """Give up ``caller``'s car permission. Always succeeds."""
        self._cars_with_permission.discard(caller)
        self._emit(CrossingEventType.CAR_PERMISSION_RELEASED, caller)

    # ------------------------------------------------------------------
    # Train operations
    # ------------------------------------------------------------------
    def request_train_crossing(self, caller: Hashable) -> bool:
        """Ask to run a train over the crossing.

        Returns:
            True if the crossing was granted, False if StopTrain was
            signalled because cars overstayed the grace period.

        Raises:
            NotAuthorizedTrainError: If caller is not an authorized train.
        """
        if caller not in self._authorized_trains:
            logger.warning('Train crossing rejected: %s not authorized', caller)
            raise NotAuthorizedTrainError()
        self.advance_if_expired()

        if self._state is CrossingState.PRE_LOCKED:
            now = self.clock.timestamp()
            if now > self._pre_locked_since + self._pre_locked_duration:
                logger.warning(
                    'STOP train %s: %d car(s) overstayed the grace period '
                    '(pre-locked since t=%d, now t=%d)',
                    caller,
                    len(self._cars_with_permission),
                    self._pre_locked_since,
                    now,
                )
                self._emit(CrossingEventType.STOP_TRAIN, caller)
                return False

        self._emit(CrossingEventType.TRAIN_CROSSING_REQUEST, caller, granted=True)
        return True

    def release_train_crossing(self, caller: Hashable) -> None:
        """Signal that the train has left the crossing.

        Does not change the phase; only the operator reopens the crossing.
        """
        self._emit(CrossingEventType.TRAIN_PERMISSION_RELEASED, caller)

    # ------------------------------------------------------------------
    # Event sink
    # ------------------------------------------------------------------
    def add_listener(self, callback: Callable[[CrossingEvent], None]) -> None:
        """Add a listener called with every emitted CrossingEvent.

        Args:
            callback: Function taking a CrossingEvent.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)
            logger.debug('Added listener %r', callback)

    def remove_listener(self, callback: Callable[[CrossingEvent], None]) -> None:
        """Remove a listener callback.

        Args:
            callback: The callback function to remove.
        """
        try:
            self._listeners.remove(callback)
            logger.debug('Removed listener %r', callback)
        except ValueError:
            logger.debug('Listener %r not registered', callback)

    def _emit(
        self,
        event_type: CrossingEventType,
        identity: Hashable,
        granted: Optional[bool] = None,
    ) -> CrossingEvent:
        event = CrossingEvent(
            event_type=event_type,
            identity=identity,
            timestamp=self.clock.timestamp(),
            granted=granted,
        )
        self.event_history.append(event)
        logger.info('Event %s at t=%d', event, event.timestamp)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    'Listener %r raised exception while notifying', callback
                )
        return event

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def report_state(self) -> Dict[str, Any]:
        """Snapshot of the controller for displays and logs.

        Does not resolve expired timers.
        """
        return {
            'state': self._state.name,
            'time': self.clock.timestamp(),
            'infrastructure': self._infrastructure,
            'free_to_cross_duration': self._free_to_cross_duration,
            'max_cars': self._max_cars,
            'pre_locked_duration': self._pre_locked_duration,
            'free_to_cross_since': self._free_to_cross_since,
            'pre_locked_since': self._pre_locked_since,
            'free_to_cross_remaining': self.free_to_cross_remaining(),
            'pre_locked_remaining': self.pre_locked_remaining(),
            'authorized_trains': sorted(map(str, self._authorized_trains)),
            'cars_with_permission': sorted(map(str, self._cars_with_permission)),
        }
