# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Reconcile Machine records against OpenStack instances.

The control loop calls ``create``, ``update``, ``delete`` or ``exists`` once
per machine and may call them again at any time, including after a crash in
the middle of a previous call. Every operation therefore starts by looking at
the cloud and the machine's annotations, and only acts on what is missing.

Terminal failures go through ``Actuator._handle_machine_error``, which records
them on the machine (event, status and the ERROR state annotation) before
raising them to the control loop.
"""

import logging
from datetime import timedelta
from typing import Callable, Dict, NoReturn, Optional

from lightkube import Client

from openstack_machine.addresses import ips_from_instance, node_addresses, primary_address
from openstack_machine.bootstrap import BootstrapTokenIssuer
from openstack_machine.cancellation import Context
from openstack_machine.diff import requires_update
from openstack_machine.errors import (
    AddressError,
    MachineError,
    PollTimeout,
    ProviderError,
    ReconcileError,
    StoreError,
    UserDataError,
)
from openstack_machine.events import NORMAL, WARNING, EventRecorder
from openstack_machine.literals import (
    CLUSTER_NAME_LABEL,
    CREATE_EVENT_ACTION,
    DELETE_EVENT_ACTION,
    INSTANCE_ACTIVE,
    INSTANCE_DELETE_TIMEOUT,
    MACHINE_AZ_LABEL,
    MACHINE_INSTANCE_TYPE_LABEL,
    MACHINE_REGION_LABEL,
    RETRY_INTERVAL_INSTANCE_STATUS,
    UPDATE_EVENT_ACTION,
)
from openstack_machine.models import (
    Instance,
    InstanceCreateRequest,
    InstanceListOpts,
    Machine,
    ProviderSpec,
)
from openstack_machine.poll import poll_until
from openstack_machine.protocols import (
    ComputeService,
    ProviderClient,
    ProviderResolver,
    ScriptRenderer,
)
from openstack_machine.state import InstanceState, ObservedMachine, mark_error
from openstack_machine.store import MachineStore
from openstack_machine.userdata import UserDataPipeline

log = logging.getLogger(__name__)

ErrorFactory = Callable[..., MachineError]


def machine_labels(machine: Machine, region: str, zone: str, flavor: str) -> Dict[str, str]:
    """Labels describing where a machine runs.

    Returns:
        the labels to set, empty when all of them are already set
    """
    wanted = {
        MACHINE_REGION_LABEL: region,
        MACHINE_AZ_LABEL: zone,
        MACHINE_INSTANCE_TYPE_LABEL: flavor,
    }
    if all(machine.metadata.labels.get(k) for k in wanted):
        return {}
    return wanted


def was_provisioned(machine: Machine) -> bool:
    """Whether an instance was recorded on the machine at some point."""
    annotations = machine.metadata.annotations
    if InstanceState.from_annotations(annotations).instance_id:
        return True
    return ObservedMachine.from_annotations(annotations) is not None


class Actuator:
    """Drives OpenStack instances towards the state declared by Machines."""

    def __init__(
        self,
        store: MachineStore,
        resolver: ProviderResolver,
        events: EventRecorder,
        user_data: UserDataPipeline,
        delete_timeout: Optional[timedelta] = None,
        poll_interval: timedelta = RETRY_INTERVAL_INSTANCE_STATUS,
    ):
        """Initialise the Actuator.

        Args:
            store: persistence of machine records
            resolver: resolves the cloud clients of a machine
            events: records lifecycle events
            user_data: produces the user data of new instances
            delete_timeout: how long an update waits for the replaced instance
                to disappear, defaults to INSTANCE_DELETE_TIMEOUT minutes
            poll_interval: pause between checks for the replaced instance
        """
        self.store = store
        self.resolver = resolver
        self.events = events
        self.user_data = user_data
        self._delete_timeout = delete_timeout
        self.poll_interval = poll_interval

    @classmethod
    def from_client(
        cls,
        client: Client,
        resolver: ProviderResolver,
        renderer: Optional[ScriptRenderer] = None,
    ) -> "Actuator":
        """Build an actuator talking to the cluster through ``client``.

        Args:
            client: Kubernetes client
            resolver: resolves the cloud clients of a machine
            renderer: renders user data templates

        Returns:
            a ready Actuator
        """
        return cls(
            MachineStore(client),
            resolver,
            EventRecorder(client),
            UserDataPipeline(client, BootstrapTokenIssuer(client), renderer),
        )

    @property
    def delete_timeout(self) -> timedelta:
        """How long an update waits for the replaced instance to disappear."""
        if self._delete_timeout is not None:
            return self._delete_timeout
        return timedelta(minutes=INSTANCE_DELETE_TIMEOUT.load())

    def _handle_machine_error(
        self, ctx: Context, machine: Machine, error: MachineError, action: str
    ) -> NoReturn:
        """Record a terminal error on the machine and raise it.

        Args:
            ctx: cancellation signal
            machine: the machine which failed
            error: the failure
            action: event action, NO_EVENT_ACTION to skip the event

        Raises:
            MachineError: always, the given error once recorded
            ReconcileError: if the error cannot be recorded
        """
        if action:
            self.events.eventf(machine, WARNING, "Failed" + action, "%s", error.reason.value)

        def mark(m: Machine) -> None:
            m.status.error_reason = error.reason.value
            m.status.error_message = error.message
            mark_error(m.metadata.annotations)

        try:
            self.store.update(ctx, machine, mark)
            self.store.update_status(ctx, machine)
        except StoreError as e:
            raise ReconcileError(f"unable to update machine status: {e}") from e

        log.error("Machine error %s: %s", machine.name, error.message)
        raise error

    def _resolve(
        self, ctx: Context, machine: Machine, failure: ErrorFactory, action: str
    ) -> ProviderClient:
        ctx.check()
        try:
            return self.resolver.resolve(ctx, machine)
        except ProviderError as e:
            self._handle_machine_error(
                ctx, machine, failure("Failed to get provider client: %s", e), action
            )

    def _provider_spec(
        self, ctx: Context, machine: Machine, action: str, source: Optional[Machine] = None
    ) -> ProviderSpec:
        """Parse the provider spec of ``source``, recording failures on ``machine``."""
        try:
            return (source or machine).provider_spec()
        except ValueError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.invalid_configuration("Cannot unmarshal providerSpec field: %s", e),
                action,
            )

    def _validate(
        self,
        ctx: Context,
        machine: Machine,
        compute: ComputeService,
        spec: ProviderSpec,
        failure: ErrorFactory,
        action: str,
    ) -> None:
        """Check that the image, flavor and availability zone exist."""
        try:
            if spec.root_volume is None:
                ctx.check()
                compute.image_exists(ctx, spec.image)
            ctx.check()
            compute.flavor_exists(ctx, spec.flavor)
            if spec.availability_zone:
                ctx.check()
                compute.availability_zone_exists(ctx, spec.availability_zone)
        except ProviderError as e:
            self._handle_machine_error(
                ctx, machine, failure("Machine validation failed: %s", e), action
            )

    def _find_instance(
        self,
        ctx: Context,
        compute: ComputeService,
        name: str,
        spec: ProviderSpec,
        instance_id: str = "",
        exclude: str = "",
    ) -> Optional[Instance]:
        """Look an instance up by name, image and flavor; the first match wins.

        Args:
            ctx: cancellation signal
            compute: compute collaborator
            name: name of the instance
            spec: provider spec giving the image and flavor
            instance_id: when set, only the instance with this id matches
            exclude: when set, the instance with this id never matches

        Returns:
            the matching instance, None if there is none
        """
        ctx.check()
        opts = InstanceListOpts(name=name, image=spec.image, flavor=spec.flavor)
        instances = [
            instance
            for instance in compute.list_instances(ctx, opts)
            if (not instance_id or instance.id == instance_id)
            and (not exclude or instance.id != exclude)
        ]
        return instances[0] if instances else None

    def _update_annotation(
        self,
        ctx: Context,
        provider: ProviderClient,
        machine: Machine,
        spec: ProviderSpec,
        instance_id: str,
        cluster_infra_name: str,
        failure: ErrorFactory,
        action: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record the live instance onto the machine.

        The instance is fetched again so that the recorded status and
        addresses are current. An instance which has vanished or has no
        usable address is recorded as an error built by ``failure``.

        Raises:
            MachineError: if the instance or its primary address cannot be found
            StoreError: if the machine cannot be written
        """
        try:
            instance = self._find_instance(
                ctx, provider.compute, machine.name, spec, instance_id=instance_id
            )
            if instance is None:
                raise AddressError(f"instance {instance_id} of machine {machine.name} not found")
            addresses = ips_from_instance(instance)
            primary_ip = primary_address(
                ctx, addresses, machine, spec, cluster_infra_name, provider.network
            )
        except (AddressError, ProviderError) as e:
            self._handle_machine_error(
                ctx,
                machine,
                failure("error recording Openstack instance %s: %s", instance_id, e),
                action,
            )
        log.info("Found the primary address for the machine %s: %s", machine.name, primary_ip)

        state = InstanceState(
            instance_id=instance_id, primary_ip=primary_ip, lifecycle=instance.status
        )
        observed = ObservedMachine.from_machine(machine)

        def record(m: Machine) -> None:
            m.metadata.labels.update(labels or {})
            state.apply(m.metadata.annotations)
            observed.apply(m.metadata.annotations)

        self.store.update(ctx, machine, record)

        status_addresses = node_addresses(machine, primary_ip)
        if machine.status.addresses != status_addresses:
            machine.status.addresses = status_addresses
            self.store.update_status(ctx, machine)

    def _associate_floating_ip(
        self,
        ctx: Context,
        provider: ProviderClient,
        machine: Machine,
        instance: Instance,
        cluster_name: str,
        address: str,
    ) -> None:
        try:
            ctx.check()
            floating_ip = provider.network.get_or_create_floating_ip(ctx, cluster_name, address)
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.create_machine("Get floatingIP err: %s", e),
                CREATE_EVENT_ACTION,
            )
        try:
            ctx.check()
            port = provider.compute.get_management_port(ctx, instance)
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.create_machine("Get management port err: %s", e),
                CREATE_EVENT_ACTION,
            )
        try:
            ctx.check()
            provider.network.associate_floating_ip(ctx, floating_ip, port.id)
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.create_machine("Associate floatingIP err: %s", e),
                CREATE_EVENT_ACTION,
            )

    def create(self, ctx: Context, machine: Machine) -> None:
        """Create the instance of a machine unless it already exists.

        Args:
            ctx: cancellation signal
            machine: the machine to create an instance for

        Raises:
            MachineError: on any terminal failure, recorded on the machine
            ReconcileError: on transient failures
        """
        self._create(ctx, machine)

    def _create(
        self, ctx: Context, machine: Machine, previous: Optional[InstanceState] = None
    ) -> Optional[Instance]:
        """Create the instance of a machine, or the one replacing ``previous``.

        When replacing, an existing instance matching the new spec other than
        ``previous`` is adopted, and nothing is recorded on the machine: the
        caller records the replacement once ``previous`` is gone.

        Returns:
            the created or adopted instance, None when creation was skipped
        """
        cluster_infra_name = self.store.infrastructure_name(ctx)
        if machine.cluster_label != cluster_infra_name:
            log.error(
                "%s label value is incorrect: %s, machine %s cannot join cluster %s",
                CLUSTER_NAME_LABEL,
                machine.cluster_label,
                machine.name,
                cluster_infra_name,
            )
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.invalid_configuration(
                    "%s label value is incorrect: %s, machine %s cannot join cluster %s",
                    CLUSTER_NAME_LABEL,
                    machine.cluster_label,
                    machine.name,
                    cluster_infra_name,
                ),
                CREATE_EVENT_ACTION,
            )

        provider = self._resolve(ctx, machine, MachineError.create_machine, CREATE_EVENT_ACTION)
        spec = self._provider_spec(ctx, machine, CREATE_EVENT_ACTION)
        self._validate(
            ctx,
            machine,
            provider.compute,
            spec,
            MachineError.invalid_configuration,
            CREATE_EVENT_ACTION,
        )

        previous_id = previous.instance_id if previous is not None else ""
        try:
            instance = self._find_instance(
                ctx, provider.compute, machine.name, spec, exclude=previous_id
            )
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.create_machine("error getting OpenStack instance: %s", e),
                CREATE_EVENT_ACTION,
            )
        if instance is not None and previous is not None:
            log.info("Adopting instance %s to replace %s", instance.id, previous_id)
            return instance
        if instance is not None:
            log.info("Skipped creating a VM that already exists")
            return None

        # A new instance under an old name would not get its node certificate approved.
        if previous is None and was_provisioned(machine):
            log.error(
                "The instance has been destroyed for the machine %s, cannot recreate it",
                machine.name,
            )
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.invalid_configuration(
                    "the instance has been destroyed for the machine %s, cannot recreate it",
                    machine.name,
                ),
                CREATE_EVENT_ACTION,
            )

        try:
            user_data = self.user_data.render(ctx, machine, spec)
        except (UserDataError, StoreError) as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.create_machine("error creating Openstack instance: %s", e),
                CREATE_EVENT_ACTION,
            )

        request = InstanceCreateRequest(
            name=machine.name,
            cluster_name=f"{machine.namespace}-{machine.cluster_label}",
            is_control_plane=machine.is_control_plane,
            user_data=user_data,
            provider_spec=spec,
        )
        try:
            ctx.check()
            instance = provider.compute.create_instance(ctx, request)
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.create_machine("error creating Openstack instance: %s", e),
                CREATE_EVENT_ACTION,
            )
        log.info("Created instance %s for machine %s", instance.id, machine.name)

        if spec.floating_ip:
            self._associate_floating_ip(
                ctx, provider, machine, instance, request.cluster_name, spec.floating_ip
            )

        self.events.eventf(machine, NORMAL, "Created", "Created machine %s", machine.name)
        if previous is not None:
            return instance

        labels = machine_labels(machine, provider.region, instance.availability_zone, spec.flavor)
        self._update_annotation(
            ctx,
            provider,
            machine,
            spec,
            instance.id,
            cluster_infra_name,
            MachineError.create_machine,
            CREATE_EVENT_ACTION,
            labels,
        )
        return instance

    def delete(self, ctx: Context, machine: Machine) -> None:
        """Delete the instance of a machine if it exists.

        Args:
            ctx: cancellation signal
            machine: the machine whose instance is deleted

        Raises:
            MachineError: on any terminal failure, recorded on the machine
        """
        provider = self._resolve(ctx, machine, MachineError.delete_machine, DELETE_EVENT_ACTION)
        spec = self._provider_spec(ctx, machine, DELETE_EVENT_ACTION)
        self._delete_instance(ctx, machine, provider, machine.name, spec, DELETE_EVENT_ACTION)

    def _delete_instance(
        self,
        ctx: Context,
        machine: Machine,
        provider: ProviderClient,
        name: str,
        spec: ProviderSpec,
        action: str,
        instance_id: str = "",
        exclude: str = "",
    ) -> None:
        """Delete the instance matching ``name`` and ``spec``, failures recorded on ``machine``.

        ``instance_id`` and ``exclude`` narrow the lookup as in ``_find_instance``.
        """
        try:
            instance = self._find_instance(
                ctx, provider.compute, name, spec, instance_id=instance_id, exclude=exclude
            )
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.delete_machine("error getting OpenStack instance: %s", e),
                action,
            )
        if instance is None:
            log.info("Skipped deleting %s that is already deleted", name)
            return

        try:
            ctx.check()
            provider.compute.delete_instance(ctx, instance)
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.delete_machine("error deleting Openstack instance: %s", e),
                action,
            )
        self.events.eventf(machine, NORMAL, "Deleted", "Deleted machine %s", name)

    def update(self, ctx: Context, machine: Machine) -> None:
        """Bring the instance of a machine in line with its spec.

        Worker instances are replaced: the new instance is created first, then
        the previous one is deleted by id and waited for. The machine keeps
        pointing at the previous instance until it is gone, so an interrupted
        update resumes with the same replacement. Control plane machines
        cannot be updated.

        Args:
            ctx: cancellation signal
            machine: the desired machine

        Raises:
            MachineError: on any terminal failure, recorded on the machine
            ReconcileError: on transient failures, or when the current state
                of the machine is unknown
        """
        provider = self._resolve(ctx, machine, MachineError.update_machine, UPDATE_EVENT_ACTION)
        spec = self._provider_spec(ctx, machine, UPDATE_EVENT_ACTION)
        self._validate(
            ctx, machine, provider.compute, spec, MachineError.update_machine, UPDATE_EVENT_ACTION
        )
        cluster_infra_name = self.store.infrastructure_name(ctx)

        current = self.store.get(ctx, machine.name, machine.namespace)
        if current is None or (
            observed := ObservedMachine.from_annotations(current.metadata.annotations)
        ) is None:
            self._bootstrap(ctx, provider, machine, spec, cluster_infra_name)
            return

        if not requires_update(observed, ObservedMachine.from_machine(machine)):
            log.debug("Machine %s is up to date", machine.name)
            return

        if observed.is_control_plane or machine.is_control_plane:
            log.error("control plane inplace update failed: not supported")
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.update_machine("control plane inplace update failed: not supported"),
                UPDATE_EVENT_ACTION,
            )

        log.info("re-creating machine %s for update", observed.name)
        previous = observed.to_machine()
        previous_spec = self._provider_spec(ctx, machine, UPDATE_EVENT_ACTION, source=previous)
        previous_id = InstanceState.from_annotations(current.metadata.annotations).instance_id

        replacement = self._create(ctx, machine, previous=InstanceState(instance_id=previous_id))
        self._delete_instance(
            ctx,
            machine,
            provider,
            previous.name,
            previous_spec,
            UPDATE_EVENT_ACTION,
            instance_id=previous_id,
            exclude=replacement.id,
        )

        def previous_instance_gone() -> bool:
            instance = self._find_instance(
                ctx,
                provider.compute,
                previous.name,
                previous_spec,
                instance_id=previous_id,
                exclude=replacement.id,
            )
            return instance is None

        try:
            poll_until(ctx, previous_instance_gone, self.poll_interval, self.delete_timeout)
        except PollTimeout as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.delete_machine("error deleting Openstack instance: %s", e),
                UPDATE_EVENT_ACTION,
            )

        labels = machine_labels(
            machine, provider.region, replacement.availability_zone, spec.flavor
        )
        self._update_annotation(
            ctx,
            provider,
            machine,
            spec,
            replacement.id,
            cluster_infra_name,
            MachineError.update_machine,
            UPDATE_EVENT_ACTION,
            labels,
        )
        log.info("Successfully updated machine %s", observed.name)
        self.events.eventf(machine, NORMAL, "Updated", "Updated machine %s", observed.name)

    def _bootstrap(
        self,
        ctx: Context,
        provider: ProviderClient,
        machine: Machine,
        spec: ProviderSpec,
        cluster_infra_name: str,
    ) -> None:
        """Adopt the running instance of a machine nothing was recorded for."""
        try:
            instance = self._find_instance(ctx, provider.compute, machine.name, spec)
        except ProviderError as e:
            self._handle_machine_error(
                ctx,
                machine,
                MachineError.update_machine("error getting OpenStack instance: %s", e),
                UPDATE_EVENT_ACTION,
            )
        if instance is None or instance.status != INSTANCE_ACTIVE:
            raise ReconcileError(f"Cannot retrieve current state to update machine {machine.name}")

        log.info("Populating current state for bootstrap machine %s", machine.name)
        labels = machine_labels(machine, provider.region, instance.availability_zone, spec.flavor)
        self._update_annotation(
            ctx,
            provider,
            machine,
            spec,
            instance.id,
            cluster_infra_name,
            MachineError.update_machine,
            UPDATE_EVENT_ACTION,
            labels,
        )

    def exists(self, ctx: Context, machine: Machine) -> bool:
        """Whether the instance of a machine exists.

        Raises:
            ReconcileError: if the instance cannot be looked up
        """
        try:
            ctx.check()
            provider = self.resolver.resolve(ctx, machine)
            spec = machine.provider_spec()
            return self._find_instance(ctx, provider.compute, machine.name, spec) is not None
        except (ProviderError, ValueError) as e:
            raise ReconcileError(f"Error checking if instance exists: {e}") from e
