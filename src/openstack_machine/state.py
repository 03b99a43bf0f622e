# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""State the actuator records onto a machine's annotations.

Annotations are a plain string map on the wire. InstanceState and
ObservedMachine are the typed records behind them; they are converted only
when reading or writing the annotation map.
"""

import logging
from typing import Any, Dict, MutableMapping, Optional

from pydantic import BaseModel, Field, ValidationError

from openstack_machine.literals import (
    ERROR_STATE,
    INSTANCE_ID_ANNOTATION,
    INSTANCE_IP_ANNOTATION,
    INSTANCE_STATE_ANNOTATION,
    INSTANCE_STATUS_ANNOTATION,
)
from openstack_machine.models import Machine, SpecMetadata, is_control_plane

log = logging.getLogger(__name__)


class InstanceState(BaseModel):
    """Identity, address and lifecycle state of the instance backing a machine.

    Attributes:
        instance_id: id of the cloud instance
        primary_ip: resolved primary address
        lifecycle: the instance status string, or ERROR
    """

    instance_id: str = ""
    primary_ip: str = ""
    lifecycle: str = ""

    @classmethod
    def from_annotations(cls, annotations: Dict[str, str]) -> "InstanceState":
        """Read the state from a machine's annotations."""
        return cls(
            instance_id=annotations.get(INSTANCE_ID_ANNOTATION, ""),
            primary_ip=annotations.get(INSTANCE_IP_ANNOTATION, ""),
            lifecycle=annotations.get(INSTANCE_STATE_ANNOTATION, ""),
        )

    def apply(self, annotations: MutableMapping[str, str]) -> None:
        """Write the state onto a machine's annotations."""
        annotations[INSTANCE_ID_ANNOTATION] = self.instance_id
        annotations[INSTANCE_IP_ANNOTATION] = self.primary_ip
        annotations[INSTANCE_STATE_ANNOTATION] = self.lifecycle

    @property
    def failed(self) -> bool:
        """Whether the machine is marked as broken."""
        return self.lifecycle == ERROR_STATE


def mark_error(annotations: MutableMapping[str, str]) -> None:
    """Force the lifecycle state of a machine to ERROR."""
    annotations[INSTANCE_STATE_ANNOTATION] = ERROR_STATE


class ObservedMachine(BaseModel):
    """The part of a machine the actuator last provisioned an instance for.

    Attributes:
        name: name of the machine
        namespace: namespace of the machine
        labels: machine labels at the time, used to tell its role
        spec_metadata: node metadata of the spec
        provider_spec: raw provider spec
    """

    name: str
    namespace: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    spec_metadata: SpecMetadata = Field(default_factory=SpecMetadata)
    provider_spec: Optional[Dict[str, Any]] = None

    @classmethod
    def from_machine(cls, machine: Machine) -> "ObservedMachine":
        """Snapshot the desired state of a machine."""
        return cls(
            name=machine.name,
            namespace=machine.namespace,
            labels=dict(machine.metadata.labels),
            spec_metadata=machine.spec.metadata.model_copy(deep=True),
            provider_spec=machine.spec.provider_spec.value,
        )

    @classmethod
    def from_annotations(cls, annotations: Dict[str, str]) -> Optional["ObservedMachine"]:
        """Read the snapshot from a machine's annotations.

        Returns:
            the snapshot, None when absent or unreadable
        """
        if not (raw := annotations.get(INSTANCE_STATUS_ANNOTATION)):
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            log.warning("Ignoring unreadable %s annotation", INSTANCE_STATUS_ANNOTATION)
            return None

    def apply(self, annotations: MutableMapping[str, str]) -> None:
        """Write the snapshot onto a machine's annotations."""
        annotations[INSTANCE_STATUS_ANNOTATION] = self.model_dump_json()

    @property
    def is_control_plane(self) -> bool:
        """Whether the snapshot is of a control plane machine."""
        return is_control_plane(self.labels)

    def to_machine(self) -> Machine:
        """Rebuild a machine carrying the snapshot's name and specs."""
        machine = Machine()
        machine.metadata.name = self.name
        machine.metadata.namespace = self.namespace
        machine.metadata.labels = dict(self.labels)
        machine.spec.metadata = self.spec_metadata.model_copy(deep=True)
        machine.spec.provider_spec.value = self.provider_spec
        return machine
