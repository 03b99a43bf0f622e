# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Data models for machines and the cloud resources backing them.

The Machine models follow the JSON shape of the ``machine.openshift.io/v1beta1``
Machine resource. Fields the actuator doesn't interpret are kept as extras so
that writing a machine back never drops them.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from openstack_machine.literals import (
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_NODE_LABELS,
    CONTROL_PLANE_ROLES,
    MACHINE_API_GROUP,
    MACHINE_API_VERSION,
    MACHINE_ROLE_LABEL,
)


class _KubeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ObjectMeta(_KubeModel):
    """Metadata of a machine.

    Attributes:
        name: name of the machine
        namespace: namespace of the machine
        labels: free-form labels
        annotations: free-form annotations
        resource_version: version used for optimistic concurrency
        uid: unique id assigned by the API server
    """

    name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    uid: Optional[str] = None

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        return v or {}


class SpecMetadata(_KubeModel):
    """Metadata propagated to the node backing the machine.

    Attributes:
        name: name given to the node
        generate_name: prefix of a generated node name
        namespace: namespace of the node metadata
        labels: labels applied to the node
        annotations: annotations applied to the node
        owner_references: owners set on the node
    """

    name: Optional[str] = None
    generate_name: Optional[str] = Field(default=None, alias="generateName")
    namespace: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner_references: Optional[List[Dict[str, Any]]] = Field(
        default=None, alias="ownerReferences"
    )

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _null_as_empty(cls, v):
        return v or {}


class ProviderSpecHolder(_KubeModel):
    """Opaque provider configuration.

    Attributes:
        value: the raw provider spec
    """

    value: Optional[Dict[str, Any]] = None


class MachineSpec(_KubeModel):
    """Desired state of a machine.

    Attributes:
        metadata: metadata propagated to the node
        provider_spec: provider specific configuration
    """

    metadata: SpecMetadata = Field(default_factory=SpecMetadata)
    provider_spec: ProviderSpecHolder = Field(
        default_factory=ProviderSpecHolder, alias="providerSpec"
    )


class NodeAddress(_KubeModel):
    """An address of the node backing the machine.

    Attributes:
        type: one of InternalIP, Hostname, InternalDNS, ...
        address: the address value
    """

    type: str
    address: str


class MachineStatus(_KubeModel):
    """Observed state of a machine.

    Attributes:
        error_reason: machine-readable reason of the last terminal error
        error_message: human-readable message of the last terminal error
        addresses: addresses of the node backing the machine
    """

    error_reason: Optional[str] = Field(default=None, alias="errorReason")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    addresses: List[NodeAddress] = Field(default_factory=list)


class Machine(_KubeModel):
    """A Machine resource.

    Attributes:
        api_version: api version of the resource
        kind: kind of the resource
        metadata: identity, labels and annotations
        spec: desired state
        status: observed state
    """

    api_version: str = Field(
        default=f"{MACHINE_API_GROUP}/{MACHINE_API_VERSION}", alias="apiVersion"
    )
    kind: str = "Machine"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: MachineSpec = Field(default_factory=MachineSpec)
    status: MachineStatus = Field(default_factory=MachineStatus)

    @property
    def name(self) -> str:
        """Name of the machine."""
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """Namespace of the machine."""
        return self.metadata.namespace

    @property
    def cluster_label(self) -> str:
        """Value of the cluster-membership label."""
        return self.metadata.labels.get(CLUSTER_NAME_LABEL, "")

    @property
    def is_control_plane(self) -> bool:
        """Whether the machine belongs to the control plane."""
        return is_control_plane(self.metadata.labels)

    def provider_spec(self) -> "ProviderSpec":
        """Parse the provider spec of this machine.

        Raises:
            ValueError: if the provider spec is missing or invalid
        """
        if self.spec.provider_spec.value is None:
            raise ValueError(f"machine {self.name} has no providerSpec value")
        return ProviderSpec.model_validate(self.spec.provider_spec.value)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the Kubernetes JSON representation."""
        return self.model_dump(by_alias=True, exclude_none=True)


def is_control_plane(labels: Dict[str, str]) -> bool:
    """Determine from a machine's labels whether it is part of the control plane.

    Args:
        labels: labels of the machine

    Returns:
        True for control plane machines
    """
    if any(label in labels for label in CONTROL_PLANE_NODE_LABELS):
        return True
    return labels.get(MACHINE_ROLE_LABEL, "") in CONTROL_PLANE_ROLES


class SecretReference(_KubeModel):
    """Reference to a secret.

    Attributes:
        name: name of the secret
        namespace: namespace of the secret, defaults to the machine's
    """

    name: str = ""
    namespace: str = ""


class ProviderSpec(_KubeModel):
    """OpenStack specific configuration of a machine.

    Attributes:
        image: name of the image to boot
        flavor: name of the flavor to boot
        availability_zone: availability zone of the instance
        primary_subnet: subnet whose network carries the primary address
        floating_ip: floating IP address to associate with the instance
        user_data_secret: secret holding the user data
        root_volume: boot-from-volume configuration
    """

    image: str = ""
    flavor: str
    availability_zone: str = Field(default="", alias="availabilityZone")
    primary_subnet: str = Field(default="", alias="primarySubnet")
    floating_ip: str = Field(default="", alias="floatingIP")
    user_data_secret: Optional[SecretReference] = Field(default=None, alias="userDataSecret")
    root_volume: Optional[Dict[str, Any]] = Field(default=None, alias="rootVolume")


class InstanceAddress(BaseModel):
    """An address of an instance on one network.

    Attributes:
        addr: the address
        version: IP version, 4 or 6
        type: fixed or floating
    """

    model_config = ConfigDict(populate_by_name=True)

    addr: str
    version: int = 4
    type: str = Field(default="", alias="OS-EXT-IPS:type")


class Instance(BaseModel):
    """A compute instance as reported by the cloud.

    Attributes:
        id: unique id of the instance
        name: name of the instance
        status: lifecycle status, e.g. ACTIVE, BUILD or ERROR
        availability_zone: availability zone hosting the instance
        addresses: per network name, the addresses on that network
        access_ipv4: explicitly configured IPv4 access address
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    status: str = ""
    availability_zone: str = Field(default="", alias="OS-EXT-AZ:availability_zone")
    addresses: Dict[str, List[InstanceAddress]] = Field(default_factory=dict)
    access_ipv4: str = Field(default="", alias="accessIPv4")


class Network(BaseModel):
    """A network."""

    id: str
    name: str = ""
    tags: List[str] = Field(default_factory=list)


class Subnet(BaseModel):
    """A subnet."""

    id: str
    network_id: str


class Port(BaseModel):
    """A network port."""

    id: str


class FloatingIP(BaseModel):
    """A floating IP."""

    id: str
    floating_ip_address: str


class InstanceListOpts(BaseModel):
    """Filter for listing instances.

    Attributes:
        name: exact instance name
        image: image the instance was booted from
        flavor: flavor of the instance
    """

    name: str
    image: str = ""
    flavor: str = ""


class InstanceCreateRequest(BaseModel):
    """Everything the compute collaborator needs to boot an instance.

    Attributes:
        name: instance name, equal to the machine name
        cluster_name: ``<namespace>-<cluster label>``, used for tagging
        is_control_plane: whether control plane security groups apply
        user_data: rendered boot configuration
        provider_spec: the machine's parsed provider spec
    """

    name: str
    cluster_name: str
    is_control_plane: bool = False
    user_data: str = ""
    provider_spec: ProviderSpec
