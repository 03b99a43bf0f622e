# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Cancellation and deadlines for a single reconciliation call.

A Context is handed down from the control loop to every external call the
actuator makes. Collaborators may call ``ctx.check()`` before doing work;
the actuator checks it before each cloud or Kubernetes API call and while
waiting between polls.
"""

import threading
import time
from datetime import timedelta
from typing import Optional

from openstack_machine.errors import Cancelled


class Context:
    """A cancellation signal with an optional deadline.

    Attributes:
        deadline (Optional[float]): ``time.monotonic()`` value after which the
            context is expired
    """

    def __init__(self, deadline: Optional[float] = None, event: Optional[threading.Event] = None):
        """Initialise the Context.

        Args:
            deadline: monotonic timestamp after which the context expires
            event: shared cancellation event
        """
        self.deadline = deadline
        self._event = event or threading.Event()

    @classmethod
    def background(cls) -> "Context":
        """A context which is never cancelled unless ``cancel()`` is called."""
        return cls()

    def with_timeout(self, timeout: timedelta) -> "Context":
        """Derive a context expiring after ``timeout`` or with its parent.

        Cancelling the parent cancels the child, since both share one event.

        Args:
            timeout: how long from now the child may run

        Returns:
            the derived context
        """
        deadline = time.monotonic() + timeout.total_seconds()
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return Context(deadline, self._event)

    @property
    def event(self) -> threading.Event:
        """The event which is set on cancellation."""
        return self._event

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def done(self) -> bool:
        """True once cancelled or past the deadline."""
        return self._event.is_set() or self.remaining() == 0.0

    def check(self) -> None:
        """Raise if the context is done.

        Raises:
            Cancelled: when cancelled or past the deadline
        """
        if self._event.is_set():
            raise Cancelled("operation cancelled")
        if self.remaining() == 0.0:
            raise Cancelled("deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early on cancellation or deadline."""
        if (remaining := self.remaining()) is not None:
            seconds = min(seconds, remaining)
        self._event.wait(seconds)
