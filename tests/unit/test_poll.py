# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# pylint: disable=missing-function-docstring
"""Unit tests for the poll and cancellation modules."""

import threading
from datetime import timedelta
from unittest import mock

import pytest

from openstack_machine.cancellation import Context
from openstack_machine.errors import Cancelled, PollTimeout, ProviderError
from openstack_machine.poll import poll_until

INTERVAL = timedelta(milliseconds=5)


def test_poll_until_immediate_success():
    condition = mock.MagicMock(return_value=True)
    poll_until(Context.background(), condition, INTERVAL, timedelta(seconds=1))
    condition.assert_called_once_with()


def test_poll_until_retries_until_true():
    condition = mock.MagicMock(side_effect=[False, False, True])
    poll_until(Context.background(), condition, INTERVAL, timedelta(seconds=5))
    assert condition.call_count == 3


def test_poll_until_tolerates_provider_errors():
    condition = mock.MagicMock(side_effect=[ProviderError("flaky"), True])
    poll_until(Context.background(), condition, INTERVAL, timedelta(seconds=5))
    assert condition.call_count == 2


def test_poll_until_propagates_other_errors():
    condition = mock.MagicMock(side_effect=RuntimeError("bug"))
    with pytest.raises(RuntimeError):
        poll_until(Context.background(), condition, INTERVAL, timedelta(seconds=5))
    condition.assert_called_once_with()


def test_poll_until_timeout():
    condition = mock.MagicMock(return_value=False)
    with pytest.raises(PollTimeout):
        poll_until(Context.background(), condition, INTERVAL, timedelta(milliseconds=50))
    assert condition.call_count >= 2


def test_poll_until_cancelled_before_start():
    ctx = Context.background()
    ctx.cancel()
    condition = mock.MagicMock(return_value=True)
    with pytest.raises(Cancelled):
        poll_until(ctx, condition, INTERVAL, timedelta(seconds=1))
    condition.assert_not_called()


def test_poll_until_cancelled_while_waiting():
    ctx = Context.background()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    try:
        with pytest.raises(Cancelled, match="operation cancelled"):
            poll_until(ctx, lambda: False, timedelta(seconds=1), timedelta(seconds=30))
    finally:
        timer.cancel()


def test_poll_until_deadline_exceeded():
    ctx = Context.background().with_timeout(timedelta(milliseconds=50))
    with pytest.raises(Cancelled, match="deadline exceeded"):
        poll_until(ctx, lambda: False, timedelta(milliseconds=10), timedelta(seconds=30))


def test_context_child_shares_cancellation():
    parent = Context.background()
    child = parent.with_timeout(timedelta(minutes=1))
    assert not child.done
    parent.cancel()
    assert child.done
    with pytest.raises(Cancelled):
        child.check()


def test_context_child_deadline_never_exceeds_parent():
    parent = Context.background().with_timeout(timedelta(seconds=1))
    child = parent.with_timeout(timedelta(hours=1))
    assert child.deadline == parent.deadline
    assert Context.background().remaining() is None
