# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Protocol definitions module.

Contracts of the collaborators the actuator consumes but doesn't implement.
Cloud collaborators raise ProviderError on any cloud API failure and may
call ``ctx.check()`` to honour cancellation.
"""

from dataclasses import dataclass
from typing import List, Protocol

from pydantic import SecretStr

from openstack_machine.cancellation import Context
from openstack_machine.models import (
    FloatingIP,
    Instance,
    InstanceCreateRequest,
    InstanceListOpts,
    Machine,
    Network,
    Port,
    Subnet,
)


class ComputeService(Protocol):
    """Compute operations of the cloud."""

    def list_instances(self, ctx: Context, opts: InstanceListOpts) -> List[Instance]:
        """List instances matching ``opts``."""
        ...

    def create_instance(self, ctx: Context, request: InstanceCreateRequest) -> Instance:
        """Boot an instance and return it."""
        ...

    def delete_instance(self, ctx: Context, instance: Instance) -> None:
        """Delete an instance."""
        ...

    def get_management_port(self, ctx: Context, instance: Instance) -> Port:
        """Return the port used to reach the instance."""
        ...

    def image_exists(self, ctx: Context, image: str) -> None:
        """Raise ProviderError unless the image exists."""
        ...

    def flavor_exists(self, ctx: Context, flavor: str) -> None:
        """Raise ProviderError unless the flavor exists."""
        ...

    def availability_zone_exists(self, ctx: Context, zone: str) -> None:
        """Raise ProviderError unless the availability zone exists."""
        ...


class NetworkService(Protocol):
    """Network operations of the cloud."""

    def get_subnet(self, ctx: Context, subnet_id: str) -> Subnet:
        """Get a subnet by id."""
        ...

    def get_network(self, ctx: Context, network_id: str) -> Network:
        """Get a network by id."""
        ...

    def list_networks(self, ctx: Context, tag: str) -> List[Network]:
        """List networks carrying ``tag``."""
        ...

    def get_or_create_floating_ip(self, ctx: Context, cluster_name: str, ip: str) -> FloatingIP:
        """Return the floating IP ``ip``, allocating it when needed."""
        ...

    def associate_floating_ip(self, ctx: Context, floating_ip: FloatingIP, port_id: str) -> None:
        """Associate a floating IP with a port."""
        ...


@dataclass
class ProviderClient:
    """An authenticated connection to one cloud region.

    Attributes:
        region: name of the cloud region
        compute: compute operations
        network: network operations
    """

    region: str
    compute: ComputeService
    network: NetworkService


class ProviderResolver(Protocol):
    """Resolves the cloud credentials of a machine."""

    def resolve(self, ctx: Context, machine: Machine) -> ProviderClient:
        """Return an authenticated client for the machine's cloud.

        Raises:
            ProviderError: if the credentials cannot be resolved
        """
        ...


class ScriptRenderer(Protocol):
    """Renders user-data templates into boot scripts."""

    def control_plane_script(self, machine: Machine, template: str) -> str:
        """Render the boot script of a control plane machine."""
        ...

    def node_script(self, machine: Machine, token: SecretStr, template: str) -> str:
        """Render the boot script of a worker machine joining with ``token``."""
        ...
