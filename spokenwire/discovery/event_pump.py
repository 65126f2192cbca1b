"""Session-owned scheduler that drains discovery subscriptions on a timer."""

import asyncio
import logging
from typing import Any, List, Optional

from spokenwire.discovery.mdns.subscription import Subscription


class EventPump:
    """Polls subscriptions on a fixed interval.

    Each tick asks every registered subscription whether a result is pending
    and, if so, handles exactly one before moving on. Nothing ever blocks
    waiting for a discovery event. Closed subscriptions are dropped.
    """

    def __init__(self, interval_seconds: float) -> None:
        """Initializes the EventPump.

        Args:
            interval_seconds: Delay between ticks once started.

        Raises:
            ValueError: If `interval_seconds` is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError(
                f"interval_seconds must be positive, got {interval_seconds}."
            )
        self.__interval = interval_seconds
        self.__subscriptions: List[Subscription[Any]] = []
        self.__task: Optional["asyncio.Task[None]"] = None

    @property
    def is_running(self) -> bool:
        return self.__task is not None and not self.__task.done()

    @property
    def subscriptions(self) -> List[Subscription[Any]]:
        return list(self.__subscriptions)

    def add(self, subscription: Subscription[Any]) -> None:
        """Registers |subscription| to be polled from the next tick on."""
        if subscription not in self.__subscriptions:
            self.__subscriptions.append(subscription)

    def tick(self) -> int:
        """Runs one polling pass.

        Subscriptions added while the pass runs are first polled on the next
        tick.

        Returns:
            The number of results handled.
        """
        handled = 0
        for subscription in list(self.__subscriptions):
            if subscription.is_closed:
                self.__subscriptions.remove(subscription)
                continue
            if subscription.has_pending() and subscription.process_pending():
                handled += 1
        return handled

    def start(self) -> None:
        """Starts ticking on the running event loop.

        Raises:
            RuntimeError: If already started or no event loop is running.
        """
        if self.__task is not None:
            raise RuntimeError("EventPump has already been started.")
        self.__task = asyncio.get_running_loop().create_task(self.__run())

    async def __run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logging.error("Error in event pump tick: %s", e, exc_info=True)
            await asyncio.sleep(self.__interval)

    async def stop(self) -> None:
        """Cancels the timer. Registered subscriptions are left untouched."""
        task = self.__task
        self.__task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
