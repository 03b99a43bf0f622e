# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Lifecycle events attached to Machine resources."""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from lightkube import ApiError, Client
from lightkube.models.core_v1 import EventSource, ObjectReference
from lightkube.models.meta_v1 import ObjectMeta
from lightkube.resources.core_v1 import Event

from openstack_machine.literals import EVENT_COMPONENT
from openstack_machine.models import Machine

log = logging.getLogger(__name__)

NORMAL = "Normal"
WARNING = "Warning"


class EventRecorder:
    """Records events against machines.

    Events are informational: failing to record one is logged and otherwise
    ignored, it never fails the reconciliation.
    """

    def __init__(self, client: Client, component: Optional[str] = None):
        """Initialise the EventRecorder.

        Args:
            client: Kubernetes client
            component: reporting component, defaults to EVENT_COMPONENT
        """
        self.client = client
        self.component = component or EVENT_COMPONENT.load()

    def eventf(self, machine: Machine, event_type: str, reason: str, fmt: str, *args) -> None:
        """Record an event with a %-formatted message.

        Args:
            machine: the machine the event is about
            event_type: NORMAL or WARNING
            reason: short CamelCase reason
            fmt: message format
            args: message arguments
        """
        now = datetime.now(timezone.utc)
        event = Event(
            metadata=ObjectMeta(generateName=f"{machine.name}.", namespace=machine.namespace),
            involvedObject=ObjectReference(
                apiVersion=machine.api_version,
                kind=machine.kind,
                name=machine.name,
                namespace=machine.namespace,
                uid=machine.metadata.uid,
                resourceVersion=machine.metadata.resource_version,
            ),
            reason=reason,
            message=fmt % args,
            type=event_type,
            source=EventSource(component=self.component),
            count=1,
            firstTimestamp=now,
            lastTimestamp=now,
        )
        try:
            self.client.create(event, namespace=machine.namespace)
        except (ApiError, httpx.HTTPError) as e:
            log.warning("Failed to record %s event for machine %s: %s", reason, machine.name, e)
