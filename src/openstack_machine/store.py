# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Persistence of Machine records through the Kubernetes API."""

import logging
from typing import Callable, Optional

import httpx
from lightkube import ApiError, Client
from lightkube.generic_resource import create_global_resource, create_namespaced_resource
from lightkube.types import PatchType
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt

from openstack_machine.cancellation import Context
from openstack_machine.errors import StoreError
from openstack_machine.literals import (
    CLUSTER_INFRASTRUCTURE_NAME,
    CONFIG_API_GROUP,
    MACHINE_API_GROUP,
    MACHINE_API_VERSION,
    MACHINE_UPDATE_ATTEMPTS,
)
from openstack_machine.models import Machine

log = logging.getLogger(__name__)

MachineResource = create_namespaced_resource(
    MACHINE_API_GROUP, MACHINE_API_VERSION, "Machine", "machines"
)
Infrastructure = create_global_resource(
    CONFIG_API_GROUP, "v1", "Infrastructure", "infrastructures"
)


def is_conflict(error: BaseException) -> bool:
    """Whether an error is an optimistic concurrency conflict."""
    return isinstance(error, ApiError) and error.status.code == 409


def is_not_found(error: BaseException) -> bool:
    """Whether an error reports a missing resource."""
    return isinstance(error, ApiError) and error.status.code == 404


class MachineStore:
    """Reads and writes Machine records."""

    def __init__(self, client: Client):
        """Initialise the MachineStore.

        Args:
            client: Kubernetes client
        """
        self.client = client

    def _fetch(self, ctx: Context, name: str, namespace: str) -> Machine:
        ctx.check()
        obj = self.client.get(MachineResource, name, namespace=namespace)
        return Machine.model_validate(obj.to_dict())

    def get(self, ctx: Context, name: str, namespace: str) -> Optional[Machine]:
        """Fetch the latest version of a machine.

        Args:
            ctx: cancellation signal
            name: name of the machine
            namespace: namespace of the machine

        Returns:
            the machine, None if it doesn't exist

        Raises:
            StoreError: if the machine cannot be fetched
        """
        try:
            return self._fetch(ctx, name, namespace)
        except ApiError as e:
            if is_not_found(e):
                return None
            raise StoreError(f"Failed to get machine {namespace}/{name}: {e}") from e
        except httpx.HTTPError as e:
            raise StoreError(f"Failed to get machine {namespace}/{name}: {e}") from e

    def update(self, ctx: Context, machine: Machine, mutate: Callable[[Machine], None]) -> Machine:
        """Apply ``mutate`` to a machine and persist its metadata and spec.

        ``mutate`` is applied to ``machine`` first. When the write conflicts
        with a concurrent one, the latest version is fetched and ``mutate``
        is applied to it again before retrying.

        Args:
            ctx: cancellation signal
            machine: the machine to update, mutated in place
            mutate: the change to apply, must be safe to apply repeatedly

        Returns:
            the machine as persisted

        Raises:
            StoreError: if the machine cannot be written
        """
        mutate(machine)
        target = machine
        retrying = Retrying(
            stop=stop_after_attempt(MACHINE_UPDATE_ATTEMPTS),
            retry=retry_if_exception(is_conflict),
            before_sleep=before_sleep_log(log, logging.DEBUG),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        log.info("Conflict updating machine %s, retrying", machine.name)
                        target = self._fetch(ctx, machine.name, machine.namespace)
                        mutate(target)
                    ctx.check()
                    obj = self.client.replace(MachineResource.from_dict(target.to_dict()))
        except (ApiError, httpx.HTTPError) as e:
            raise StoreError(f"Failed to update machine {machine.name}: {e}") from e

        persisted = Machine.model_validate(obj.to_dict())
        machine.metadata.resource_version = persisted.metadata.resource_version
        return persisted

    def update_status(self, ctx: Context, machine: Machine) -> None:
        """Persist the status of a machine.

        Raises:
            StoreError: if the status cannot be written
        """
        status = machine.status.model_dump(by_alias=True, exclude_none=True)
        ctx.check()
        try:
            self.client.patch(
                MachineResource.Status,
                machine.name,
                {"status": status},
                namespace=machine.namespace,
                patch_type=PatchType.MERGE,
            )
        except (ApiError, httpx.HTTPError) as e:
            raise StoreError(f"Failed to update status of machine {machine.name}: {e}") from e

    def infrastructure_name(self, ctx: Context) -> str:
        """Return the stable name of the cluster.

        Raises:
            StoreError: if the cluster Infrastructure object cannot be read
        """
        ctx.check()
        try:
            infra = self.client.get(Infrastructure, CLUSTER_INFRASTRUCTURE_NAME)
        except (ApiError, httpx.HTTPError) as e:
            raise StoreError(f"Failed to retrieve cluster Infrastructure object: {e}") from e
        return (infra.to_dict().get("status") or {}).get("infrastructureName", "")
