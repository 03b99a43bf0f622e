# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Decide whether a machine's instance must be recreated."""

from typing import Any, Dict, Optional

from openstack_machine.models import SpecMetadata
from openstack_machine.state import ObservedMachine


def _node_metadata(metadata: SpecMetadata) -> Dict[str, Any]:
    """Every field of the node metadata, including ones kept as extras."""
    return metadata.model_dump(by_alias=True, exclude_none=True)


def requires_update(a: Optional[ObservedMachine], b: Optional[ObservedMachine]) -> bool:
    """Compare two machine snapshots on the fields which shape the instance.

    Only the name, the node metadata and the provider spec are compared.
    The node metadata is compared as a whole: name, generateName, namespace,
    labels, annotations, ownerReferences and any field not modelled here.
    Status never takes part: a recreated instance changes the status, and
    comparing it would recreate forever.

    Args:
        a: the previously provisioned machine
        b: the desired machine

    Returns:
        True when the instance must be replaced
    """
    if a is None or b is None:
        return True
    return (
        _node_metadata(a.spec_metadata) != _node_metadata(b.spec_metadata)
        or a.provider_spec != b.provider_spec
        or a.name != b.name
    )
