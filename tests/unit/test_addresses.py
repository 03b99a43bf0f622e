# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# pylint: disable=missing-function-docstring
"""Unit tests for the addresses module."""

import pytest
from mocks import INFRA_NAME, FakeNetwork, make_machine

from openstack_machine.addresses import ips_from_instance, node_addresses, primary_address
from openstack_machine.cancellation import Context
from openstack_machine.errors import AddressError, ProviderError
from openstack_machine.models import Instance

TAG = f"{INFRA_NAME}-primaryClusterNetwork"


def _instance(addresses, access_ipv4=""):
    return Instance.model_validate(
        {"id": "uuid-1", "addresses": addresses, "accessIPv4": access_ipv4}
    )


def test_ips_from_instance_keeps_ipv4_per_network():
    instance = _instance(
        {
            "net-a": [
                {"addr": "fd00::5", "version": 6},
                {"addr": "10.0.0.5", "version": 4, "OS-EXT-IPS:type": "fixed"},
            ],
            "net-b": [{"addr": "192.168.0.9", "version": 4}],
            "net-v6": [{"addr": "fd00::9", "version": 6}],
        }
    )
    assert ips_from_instance(instance) == {"net-a": "10.0.0.5", "net-b": "192.168.0.9"}


def test_ips_from_instance_access_ip_wins():
    instance = _instance({"net-a": [{"addr": "10.0.0.5", "version": 4}]}, "172.24.4.10")
    assert ips_from_instance(instance) == {"": "172.24.4.10"}


def test_ips_from_instance_invalid_access_ip_ignored():
    instance = _instance({"net-a": [{"addr": "10.0.0.5", "version": 4}]}, "not-an-ip")
    assert ips_from_instance(instance) == {"net-a": "10.0.0.5"}


def test_ips_from_instance_without_ipv4():
    instance = _instance({"net-v6": [{"addr": "fd00::9", "version": 6}]})
    with pytest.raises(AddressError):
        ips_from_instance(instance)


class TestPrimaryAddress:
    """Tests for primary_address."""

    def setup_method(self):
        """Set up a cloud with two networks."""
        self.ctx = Context.background()
        self.network = FakeNetwork()
        self.network.add_network("id-a", "net-a", subnets=["subnet-a"])
        self.network.add_network("id-b", "net-b", subnets=["subnet-b"])
        self.addresses = {"net-a": "10.0.0.5", "net-b": "192.168.0.9"}

    def _resolve(self, addresses, **spec):
        machine = make_machine(**spec)
        return primary_address(
            self.ctx, addresses, machine, machine.provider_spec(), INFRA_NAME, self.network
        )

    def test_single_network_needs_no_lookup(self):
        self.network.failures["get_subnet"] = ProviderError("must not be called")
        assert self._resolve({"net-a": "10.0.0.5"}, primarySubnet="subnet-b") == "10.0.0.5"
        assert self.network.calls == []

    def test_primary_subnet(self):
        assert self._resolve(self.addresses, primarySubnet="subnet-b") == "192.168.0.9"
        assert self.network.calls == ["get_subnet", "get_network"]

    def test_primary_subnet_takes_precedence_over_tag(self):
        self.network.networks["id-a"].tags.append(TAG)
        assert self._resolve(self.addresses, primarySubnet="subnet-b") == "192.168.0.9"

    def test_legacy_tag(self):
        self.network.networks["id-a"].tags.append(TAG)
        assert self._resolve(self.addresses) == "10.0.0.5"
        assert self.network.calls == ["list_networks"]

    def test_legacy_tag_missing(self):
        with pytest.raises(AddressError, match="There are no networks"):
            self._resolve(self.addresses)

    def test_legacy_tag_ambiguous(self):
        self.network.networks["id-a"].tags.append(TAG)
        self.network.networks["id-b"].tags.append(TAG)
        with pytest.raises(AddressError, match="Too many networks"):
            self._resolve(self.addresses)

    def test_primary_network_without_address(self):
        self.network.add_network("id-c", "net-c", subnets=["subnet-c"])
        with pytest.raises(AddressError, match="No primary network was found"):
            self._resolve(self.addresses, primarySubnet="subnet-c")

    def test_subnet_lookup_failure(self):
        self.network.failures["get_subnet"] = ProviderError("boom")
        with pytest.raises(AddressError, match="Could not get subnet subnet-b"):
            self._resolve(self.addresses, primarySubnet="subnet-b")


def test_node_addresses():
    addresses = node_addresses(make_machine(name="worker-3"), "10.0.0.7")
    assert [(a.type, a.address) for a in addresses] == [
        ("InternalIP", "10.0.0.7"),
        ("Hostname", "worker-3"),
        ("InternalDNS", "worker-3"),
    ]
