# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# pylint: disable=duplicate-code,missing-function-docstring
"""Unit tests for config.option module."""

import logging

import pytest

from openstack_machine.config import option
from openstack_machine.literals import INSTANCE_DELETE_TIMEOUT, TIMEOUT_INSTANCE_DELETE


def test_actuator_option_load():
    """Test that load() converts the value to the option type."""
    environ = {"TEST_STR": "some-value", "TEST_INT": "42"}

    str_option = option.StrOption("TEST_STR", "default")
    assert str_option.load(environ) == "some-value"

    int_option = option.IntOption("TEST_INT", 5)
    assert int_option.load(environ) == 42


def test_actuator_option_missing_uses_default():
    """Test that an unset or blank variable falls back to the default."""
    assert option.IntOption("TEST_INT", 5).load({}) == 5
    assert option.IntOption("TEST_INT", 5).load({"TEST_INT": "  "}) == 5


@pytest.mark.parametrize("raw", ["abc", "1.5", "0", "-3"])
def test_int_option_invalid_uses_default(raw, caplog):
    """Test that unparsable and non-positive integers fall back with a warning."""
    with caplog.at_level(logging.WARNING):
        assert option.IntOption("TEST_INT", 5).load({"TEST_INT": raw}) == 5
    assert "Ignoring invalid TEST_INT" in caplog.text


def test_actuator_option_reads_process_environment(monkeypatch):
    """Test that load() defaults to the process environment."""
    monkeypatch.setenv("CLUSTER_API_OPENSTACK_INSTANCE_DELETE_TIMEOUT", "12")
    assert INSTANCE_DELETE_TIMEOUT.load() == 12

    monkeypatch.delenv("CLUSTER_API_OPENSTACK_INSTANCE_DELETE_TIMEOUT")
    assert INSTANCE_DELETE_TIMEOUT.load() == TIMEOUT_INSTANCE_DELETE
