"""
Publish/subscribe event bus for simulator output.

Every subscription owns a bounded queue drained by its own delivery thread,
so producers never wait on a slow handler and each subscriber sees events
in the order they were published.
"""

import time
import queue
import threading
import logging
from typing import Callable, List, Optional, Type

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_STOP = object()

class Subscription:
    """A handler registered for one event type."""

    def __init__(self, bus: "EventBus", event_type: Type, handler: Callable,
                 max_queue_size: int = 10000):
        self.bus = bus
        self.event_type = event_type
        self.handler = handler
        self.dropped_events = 0
        self._queue = queue.Queue(maxsize=max_queue_size)
        self._active = True
        self._thread = threading.Thread(
            target=self._deliver_loop,
            name=f"event-subscriber-{event_type.__name__}",
            daemon=True
        )
        self._thread.start()

    @property
    def is_active(self) -> bool:
        return self._active

    def matches(self, event) -> bool:
        return self._active and isinstance(event, self.event_type)

    def enqueue(self, event):
        """Queue an event without blocking, dropping the oldest one if full."""
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped_events += 1
            except queue.Empty:
                pass
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                self.dropped_events += 1
            logger.warning(
                f"Subscriber queue for {self.event_type.__name__} is full, "
                f"dropped {self.dropped_events} events so far"
            )

    def _deliver_loop(self):
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self.handler(event)
            except Exception as e:
                logger.error(
                    f"Error in handler for {type(event).__name__}: {e}", exc_info=True
                )
            finally:
                self._queue.task_done()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued event has been handled."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def unsubscribe(self, timeout: Optional[float] = None):
        """
        Stop delivery; events already queued are handled first.

        Never blocks on a full queue: the oldest pending event is dropped to
        make room for the stop marker.
        """
        if not self._active:
            return
        self._active = False
        self.bus._remove(self)

        # May run on the delivery thread itself, which alone drains the queue
        while True:
            try:
                self._queue.put_nowait(_STOP)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                    self.dropped_events += 1
                except queue.Empty:
                    pass
                logger.warning(
                    f"Subscriber queue for {self.event_type.__name__} is full, "
                    f"dropped oldest event to stop delivery"
                )

        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)

class EventBus:
    """In-process publish/subscribe hub."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type, handler: Callable,
                  max_queue_size: int = 10000) -> Subscription:
        """
        Register a handler for events of the given type (or subclasses).

        Args:
            event_type: Event class to receive
            handler: Callable invoked with each event on the delivery thread
            max_queue_size: Pending events kept before the oldest is dropped

        Returns:
            Subscription handle, call unsubscribe() to stop delivery
        """
        subscription = Subscription(self, event_type, handler, max_queue_size)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def subscriber_count(self, event_type: Optional[Type] = None) -> int:
        with self._lock:
            if event_type is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions if issubclass(event_type, s.event_type))

    def publish(self, event):
        """Hand the event to every matching subscriber; never blocks."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]

        for subscription in targets:
            subscription.enqueue(event)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until all subscribers have drained their queues."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            subscriptions = list(self._subscriptions)

        for subscription in subscriptions:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not subscription.wait_until_idle(remaining):
                return False
        return True

    def close(self, timeout: Optional[float] = 5.0):
        """Unsubscribe everything and stop the delivery threads."""
        with self._lock:
            subscriptions = list(self._subscriptions)

        for subscription in subscriptions:
            subscription.unsubscribe(timeout)

        logger.info(f"Event bus closed ({len(subscriptions)} subscriptions)")
