# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Bounded polling which honours the caller's cancellation."""

import logging
from datetime import timedelta
from typing import Callable, Tuple, Type

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    stop_any,
    stop_when_event_set,
    wait_fixed,
)

from openstack_machine.cancellation import Context
from openstack_machine.errors import PollTimeout, ProviderError

log = logging.getLogger(__name__)


def poll_until(
    ctx: Context,
    condition: Callable[[], bool],
    interval: timedelta,
    timeout: timedelta,
    tolerate: Tuple[Type[Exception], ...] = (ProviderError,),
) -> None:
    """Call ``condition`` immediately and then every ``interval`` until it is true.

    Args:
        ctx: cancellation signal of the calling operation
        condition: returns True when the wait is over
        interval: pause between attempts
        timeout: total time allowed for the condition to become true
        tolerate: exceptions from ``condition`` which count as "not yet"

    Raises:
        PollTimeout: the condition wasn't met within ``timeout``
        Cancelled: the context was cancelled or its deadline passed
    """
    ctx.check()
    retrying = Retrying(
        stop=stop_any(
            stop_after_delay(timeout.total_seconds()),
            stop_when_event_set(ctx.event),
            lambda _: ctx.remaining() == 0.0,
        ),
        wait=wait_fixed(interval.total_seconds()),
        retry=retry_if_result(lambda done: not done) | retry_if_exception_type(tolerate),
        sleep=ctx.sleep,
        before_sleep=before_sleep_log(log, logging.DEBUG),
    )
    try:
        retrying(condition)
    except RetryError as e:
        ctx.check()
        raise PollTimeout(f"timed out waiting for the condition after {timeout}") from e
