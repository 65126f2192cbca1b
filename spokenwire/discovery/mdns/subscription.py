"""Pollable handle for a stream of discovery results."""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Generic, List

from spokenwire.discovery.mdns.discovery_events import (
    DiscoveryResult,
    EventT,
)

ResultCallback = Callable[[DiscoveryResult[EventT]], None]

DEFAULT_MAX_PENDING = 64


class Subscription(Generic[EventT]):
    """A live discovery subscription, drained one result at a time.

    Backends call `on_available()` from whatever thread or callback context
    the discovery library uses. The owner polls `has_pending()` without
    blocking and calls `process_pending()`, which hands exactly one result to
    the callback bound when the subscription was created. Results are
    therefore always handled on the owner's thread.
    """

    def __init__(
        self,
        name: str,
        callback: ResultCallback[EventT],
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        """Initializes the Subscription.

        Args:
            name: Human readable description, used in log messages.
            callback: Invoked with each result from `process_pending()`.
            max_pending: Most results held at once. When full, the oldest
                result is dropped to make room for a new one.

        Raises:
            ValueError: If `callback` is None or `max_pending` is not
                positive.
        """
        if callback is None:
            raise ValueError("callback cannot be None for Subscription.")
        if max_pending <= 0:
            raise ValueError(
                f"max_pending must be positive, got {max_pending}."
            )

        self.__name = name
        self.__callback = callback
        self.__pending: Deque[DiscoveryResult[EventT]] = deque(
            maxlen=max_pending
        )
        self.__lock = threading.Lock()
        self.__closed = False
        self.__close_callbacks: List[Callable[[], None]] = []

    @property
    def name(self) -> str:
        return self.__name

    @property
    def is_closed(self) -> bool:
        with self.__lock:
            return self.__closed

    def on_available(self, result: DiscoveryResult[EventT]) -> None:
        """Queues a result. Thread-safe. Dropped once the subscription closes."""
        with self.__lock:
            if self.__closed:
                return
            if len(self.__pending) == self.__pending.maxlen:
                logging.debug(
                    "Subscription '%s' is full; dropping its oldest result.",
                    self.__name,
                )
            self.__pending.append(result)

    def has_pending(self) -> bool:
        """Non-blocking readiness check."""
        with self.__lock:
            return len(self.__pending) > 0

    def process_pending(self) -> bool:
        """Handles at most one queued result.

        Exceptions raised by the callback are logged and swallowed so that a
        single bad event cannot stop the event pump.

        Returns:
            True if a result was handled, False if nothing was pending.
        """
        with self.__lock:
            if self.__closed or not self.__pending:
                return False
            result = self.__pending.popleft()

        try:
            self.__callback(result)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logging.error(
                "Error while processing result for subscription '%s': %s",
                self.__name,
                e,
                exc_info=True,
            )
        return True

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        """Registers cleanup that runs when the subscription is closed."""
        with self.__lock:
            if not self.__closed:
                self.__close_callbacks.append(callback)
                return
        callback()

    def close(self) -> None:
        """Releases the subscription. Safe to call more than once."""
        with self.__lock:
            if self.__closed:
                return
            self.__closed = True
            self.__pending.clear()
            close_callbacks = self.__close_callbacks
            self.__close_callbacks = []

        for callback in close_callbacks:
            try:
                callback()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.error(
                    "Error releasing subscription '%s': %s",
                    self.__name,
                    e,
                    exc_info=True,
                )
        logging.debug("Subscription '%s' closed.", self.__name)
