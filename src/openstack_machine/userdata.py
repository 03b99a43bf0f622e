# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Produce the user data an instance boots with."""

import base64
import binascii
import logging
from string import Template
from typing import Dict, Mapping, Optional

import httpx
from lightkube import ApiError, Client
from lightkube.resources.core_v1 import Secret
from pydantic import SecretStr

from openstack_machine import postprocess
from openstack_machine.bootstrap import BootstrapTokenIssuer
from openstack_machine.cancellation import Context
from openstack_machine.errors import UserDataError
from openstack_machine.literals import DISABLE_TEMPLATING_KEY, POSTPROCESSOR_KEY, USER_DATA_KEY
from openstack_machine.models import Machine, ProviderSpec, SecretReference
from openstack_machine.protocols import ScriptRenderer

log = logging.getLogger(__name__)


class TemplateScriptRenderer:
    """Render ``$NAME`` placeholders of the user data.

    Every machine sees ``MACHINE_NAME``, ``MACHINE_NAMESPACE`` and
    ``CLUSTER_NAME``; workers also see ``BOOTSTRAP_TOKEN``. Unknown placeholders are
    left as they are, so that shell variables survive rendering.
    """

    def _variables(self, machine: Machine) -> Dict[str, str]:
        return {
            "MACHINE_NAME": machine.name,
            "MACHINE_NAMESPACE": machine.namespace,
            "CLUSTER_NAME": machine.cluster_label,
        }

    def control_plane_script(self, machine: Machine, template: str) -> str:
        """Render the boot script of a control plane machine."""
        return Template(template).safe_substitute(self._variables(machine))

    def node_script(self, machine: Machine, token: SecretStr, template: str) -> str:
        """Render the boot script of a worker machine."""
        variables = self._variables(machine)
        variables["BOOTSTRAP_TOKEN"] = token.get_secret_value()
        return Template(template).safe_substitute(variables)


def _decode(data: Dict[str, str], key: str) -> str:
    try:
        return base64.b64decode(data[key]).decode()
    except (binascii.Error, UnicodeDecodeError) as e:
        raise UserDataError(f"Cannot decode key {key} of the user data secret: {e}") from e


class UserDataPipeline:
    """Reads, renders and postprocesses the user data of a machine."""

    def __init__(
        self,
        client: Client,
        token_issuer: BootstrapTokenIssuer,
        renderer: Optional[ScriptRenderer] = None,
        postprocessors: Optional[Mapping[str, postprocess.Postprocessor]] = None,
    ):
        """Initialise the UserDataPipeline.

        Args:
            client: Kubernetes client used to read the user data secret
            token_issuer: mints join tokens for worker machines
            renderer: renders the user data template, see TemplateScriptRenderer
            postprocessors: registry of postprocessors by name
        """
        self.client = client
        self.token_issuer = token_issuer
        self.renderer = renderer or TemplateScriptRenderer()
        if postprocessors is None:
            postprocessors = postprocess.POSTPROCESSORS
        self.postprocessors = postprocessors

    def _read_secret(
        self, ctx: Context, machine: Machine, ref: SecretReference
    ) -> Dict[str, str]:
        if not ref.name:
            raise UserDataError("UserDataSecret name must be provided")
        namespace = ref.namespace or machine.namespace

        ctx.check()
        try:
            secret = self.client.get(Secret, ref.name, namespace=namespace)
        except (ApiError, httpx.HTTPError) as e:
            raise UserDataError(
                f"Failed to get user data secret {namespace}/{ref.name}: {e}"
            ) from e

        data = secret.data or {}
        if USER_DATA_KEY not in data:
            raise UserDataError(
                f"Machine's userdata secret {ref.name} in namespace {namespace} "
                f"did not contain key {USER_DATA_KEY}"
            )
        return data

    def render(self, ctx: Context, machine: Machine, spec: ProviderSpec) -> str:
        """Produce the final user data of a machine.

        Args:
            ctx: cancellation signal
            machine: the machine being created
            spec: the machine's provider spec

        Returns:
            the user data, empty when the machine has none configured

        Raises:
            UserDataError: if the secret is unusable or a postprocessor fails
            StoreError: if the bootstrap token cannot be stored
        """
        if spec.user_data_secret is None:
            return ""

        data = self._read_secret(ctx, machine, spec.user_data_secret)
        user_data = _decode(data, USER_DATA_KEY)
        templating = DISABLE_TEMPLATING_KEY not in data

        if user_data and templating:
            if machine.is_control_plane:
                user_data = self.renderer.control_plane_script(machine, user_data)
            else:
                log.info("Creating bootstrap token")
                token = self.token_issuer.issue(ctx)
                user_data = self.renderer.node_script(machine, token, user_data)

        if POSTPROCESSOR_KEY in data:
            name = _decode(data, POSTPROCESSOR_KEY)
            user_data = postprocess.apply(name, user_data, self.postprocessors)
        return user_data
