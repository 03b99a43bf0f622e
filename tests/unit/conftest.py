# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""configure unit tests."""

from datetime import timedelta

import pytest
from mocks import FakeCompute, FakeEvents, FakeNetwork, FakeResolver, FakeStore, FakeUserData

from openstack_machine.actuator import Actuator
from openstack_machine.cancellation import Context


@pytest.fixture
def ctx():
    """A context which is never cancelled."""
    return Context.background()


@pytest.fixture
def compute():
    """Fake compute service."""
    return FakeCompute()


@pytest.fixture
def network():
    """Fake network service."""
    return FakeNetwork()


@pytest.fixture
def store():
    """Fake machine store."""
    return FakeStore()


@pytest.fixture
def events():
    """Fake event recorder."""
    return FakeEvents()


@pytest.fixture
def user_data():
    """Fake user data pipeline."""
    return FakeUserData()


@pytest.fixture
def resolver(compute, network):
    """Resolver handing out the fake cloud."""
    return FakeResolver(compute, network)


@pytest.fixture
def actuator(store, resolver, events, user_data):
    """Actuator wired to the fakes, with a short delete confirmation window.

    Args:
        store: fake machine store
        resolver: fake provider resolver
        events: fake event recorder
        user_data: fake user data pipeline
    """
    return Actuator(
        store,
        resolver,
        events,
        user_data,
        delete_timeout=timedelta(milliseconds=200),
        poll_interval=timedelta(milliseconds=10),
    )
