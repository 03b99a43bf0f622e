# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

# pylint: disable=missing-function-docstring
"""Unit tests for the state and diff modules."""

import json
import logging

import pytest
from mocks import make_machine

from openstack_machine.diff import requires_update
from openstack_machine.literals import (
    ERROR_STATE,
    INSTANCE_ID_ANNOTATION,
    INSTANCE_IP_ANNOTATION,
    INSTANCE_STATE_ANNOTATION,
    INSTANCE_STATUS_ANNOTATION,
    MACHINE_ROLE_LABEL,
)
from openstack_machine.models import NodeAddress, SpecMetadata
from openstack_machine.state import InstanceState, ObservedMachine, mark_error


def test_instance_state_round_trip():
    annotations = {"unrelated": "kept"}
    InstanceState(instance_id="uuid-1", primary_ip="10.0.0.5", lifecycle="ACTIVE").apply(
        annotations
    )
    assert annotations == {
        "unrelated": "kept",
        INSTANCE_ID_ANNOTATION: "uuid-1",
        INSTANCE_IP_ANNOTATION: "10.0.0.5",
        INSTANCE_STATE_ANNOTATION: "ACTIVE",
    }
    state = InstanceState.from_annotations(annotations)
    assert state.instance_id == "uuid-1"
    assert not state.failed


def test_mark_error_only_touches_lifecycle():
    annotations = {INSTANCE_ID_ANNOTATION: "uuid-1", INSTANCE_STATE_ANNOTATION: "ACTIVE"}
    mark_error(annotations)
    assert annotations[INSTANCE_STATE_ANNOTATION] == ERROR_STATE
    assert annotations[INSTANCE_ID_ANNOTATION] == "uuid-1"
    assert InstanceState.from_annotations(annotations).failed


def test_instance_state_from_empty_annotations():
    state = InstanceState.from_annotations({})
    assert state == InstanceState()


def test_observed_machine_annotation():
    machine = make_machine(labels={MACHINE_ROLE_LABEL: "worker"})
    machine.spec.metadata.labels["node-label"] = "x"
    annotations = {}
    ObservedMachine.from_machine(machine).apply(annotations)

    raw = json.loads(annotations[INSTANCE_STATUS_ANNOTATION])
    assert raw["name"] == "worker-0"
    assert raw["provider_spec"] == {"image": "rhcos", "flavor": "m1.large"}

    observed = ObservedMachine.from_annotations(annotations)
    assert observed == ObservedMachine.from_machine(machine)
    assert not observed.is_control_plane


def test_observed_machine_to_machine():
    machine = make_machine(labels={MACHINE_ROLE_LABEL: "master"})
    rebuilt = ObservedMachine.from_machine(machine).to_machine()
    assert rebuilt.name == machine.name
    assert rebuilt.namespace == machine.namespace
    assert rebuilt.is_control_plane
    assert rebuilt.provider_spec().flavor == "m1.large"


@pytest.mark.parametrize("raw", [None, "", "{not json", '{"namespace": "no-name"}'])
def test_observed_machine_unreadable(raw, caplog):
    annotations = {} if raw is None else {INSTANCE_STATUS_ANNOTATION: raw}
    with caplog.at_level(logging.WARNING):
        assert ObservedMachine.from_annotations(annotations) is None


def test_requires_update_missing_side():
    observed = ObservedMachine.from_machine(make_machine())
    assert requires_update(None, observed)
    assert requires_update(observed, None)


def test_requires_update_ignores_status_and_instance_annotations():
    previous = make_machine()
    current = make_machine(annotations={INSTANCE_ID_ANNOTATION: "uuid-1"})
    current.status.addresses = [NodeAddress(type="InternalIP", address="10.0.0.5")]
    current.status.error_reason = "CreateError"
    assert not requires_update(
        ObservedMachine.from_machine(previous), ObservedMachine.from_machine(current)
    )


@pytest.mark.parametrize(
    "change",
    [
        lambda m: m.spec.provider_spec.value.update(flavor="m1.xlarge"),
        lambda m: m.spec.metadata.labels.update(tier="gpu"),
        lambda m: m.spec.metadata.annotations.update(note="x"),
        lambda m: setattr(m.metadata, "name", "worker-1"),
        lambda m: setattr(m.spec.metadata, "generate_name", "worker-"),
        lambda m: setattr(m.spec.metadata, "namespace", "other"),
        lambda m: setattr(
            m.spec.metadata, "owner_references", [{"kind": "MachineSet", "name": "workers"}]
        ),
    ],
    ids=[
        "provider-spec",
        "node-labels",
        "node-annotations",
        "name",
        "node-generate-name",
        "node-namespace",
        "node-owner-references",
    ],
)
def test_requires_update_on_material_change(change):
    previous = make_machine()
    current = make_machine()
    change(current)
    assert requires_update(
        ObservedMachine.from_machine(previous), ObservedMachine.from_machine(current)
    )


def test_requires_update_reads_node_metadata_from_snapshot():
    machine = make_machine()
    machine.spec.metadata = SpecMetadata.model_validate(
        {
            "generateName": "worker-",
            "ownerReferences": [{"kind": "MachineSet", "name": "workers"}],
            "finalizers": ["keep"],
        }
    )
    annotations = {}
    ObservedMachine.from_machine(machine).apply(annotations)
    previous = ObservedMachine.from_annotations(annotations)
    assert not requires_update(previous, ObservedMachine.from_machine(machine))

    machine.spec.metadata = SpecMetadata.model_validate({"generateName": "worker-"})
    assert requires_update(previous, ObservedMachine.from_machine(machine))
