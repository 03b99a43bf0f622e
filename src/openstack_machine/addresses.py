# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Resolve the primary address of a machine's instance."""

import ipaddress
import logging
from typing import Dict, List

from openstack_machine.cancellation import Context
from openstack_machine.errors import AddressError, ProviderError
from openstack_machine.literals import PRIMARY_NETWORK_TAG_SUFFIX
from openstack_machine.models import Instance, Machine, Network, NodeAddress, ProviderSpec
from openstack_machine.protocols import NetworkService

log = logging.getLogger(__name__)


def _is_ipv4(address: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(address), ipaddress.IPv4Address)
    except ValueError:
        return False


def ips_from_instance(instance: Instance) -> Dict[str, str]:
    """Map each network of an instance to its IPv4 address.

    A valid access address takes precedence and is returned alone, under an
    empty network name. Networks without an IPv4 address are skipped.

    Args:
        instance: the instance to inspect

    Returns:
        network name to IPv4 address

    Raises:
        AddressError: if the instance has no IPv4 address at all
    """
    if instance.access_ipv4 and _is_ipv4(instance.access_ipv4):
        return {"": instance.access_ipv4}

    addresses: Dict[str, str] = {}
    for network_name, entries in instance.addresses.items():
        for entry in entries:
            if entry.version == 4:
                addresses[network_name] = entry.addr
    if not addresses:
        raise AddressError(f"instance {instance.id} has no IPv4 address")
    return addresses


def network_by_subnet(ctx: Context, network: NetworkService, subnet_id: str) -> Network:
    """Find the network owning a subnet.

    Raises:
        AddressError: if the subnet or its network cannot be fetched
    """
    ctx.check()
    try:
        subnet = network.get_subnet(ctx, subnet_id)
    except ProviderError as e:
        raise AddressError(f"Could not get subnet {subnet_id}: {e}") from e
    ctx.check()
    try:
        return network.get_network(ctx, subnet.network_id)
    except ProviderError as e:
        raise AddressError(f"Could not get network {subnet.network_id}: {e}") from e


def network_by_primary_tag(ctx: Context, network: NetworkService, tag: str) -> Network:
    """Find the single network carrying the legacy primary network tag.

    Raises:
        AddressError: unless exactly one network carries the tag
    """
    ctx.check()
    try:
        networks: List[Network] = network.list_networks(ctx, tag)
    except ProviderError as e:
        raise AddressError(f"Could not list networks tagged {tag}: {e}") from e
    if not networks:
        raise AddressError(f"There are no networks with primary network tag: {tag}")
    if len(networks) > 1:
        raise AddressError(f"Too many networks with the same primary network tag: {tag}")
    return networks[0]


def primary_address(
    ctx: Context,
    addresses: Dict[str, str],
    machine: Machine,
    spec: ProviderSpec,
    cluster_infra_name: str,
    network: NetworkService,
) -> str:
    """Select the primary address among the per-network addresses.

    The order of the checks matters: a single network is always primary,
    then the configured primary subnet decides, and only machines without
    one fall back to the legacy ``<infra>-primaryClusterNetwork`` tag.

    Args:
        ctx: cancellation signal
        addresses: network name to address, see ips_from_instance
        machine: the machine owning the instance
        spec: the machine's provider spec
        cluster_infra_name: stable name of the cluster
        network: network collaborator used to look the primary network up

    Returns:
        the primary address

    Raises:
        AddressError: if no primary network can be determined
    """
    if len(addresses) == 1:
        return next(iter(addresses.values()))

    if spec.primary_subnet:
        primary = network_by_subnet(ctx, network, spec.primary_subnet)
    else:
        tag = cluster_infra_name + PRIMARY_NETWORK_TAG_SUFFIX
        primary = network_by_primary_tag(ctx, network, tag)

    if (address := addresses.get(primary.name)) is None:
        raise AddressError(f"No primary network was found for the machine {machine.name}")
    return address


def node_addresses(machine: Machine, primary_ip: str) -> List[NodeAddress]:
    """Addresses published on the machine's status."""
    return [
        NodeAddress(type="InternalIP", address=primary_ip),
        NodeAddress(type="Hostname", address=machine.name),
        NodeAddress(type="InternalDNS", address=machine.name),
    ]
