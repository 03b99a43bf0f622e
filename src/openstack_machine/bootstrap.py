# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Bootstrap tokens for worker machines joining the cluster."""

import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone

import httpx
from lightkube import ApiError, Client
from lightkube.models.meta_v1 import ObjectMeta
from lightkube.resources.core_v1 import Secret
from pydantic import BaseModel, SecretStr, field_validator

from openstack_machine.cancellation import Context
from openstack_machine.errors import InvariantViolation, StoreError
from openstack_machine.literals import (
    BOOTSTRAP_TOKEN_GROUPS,
    BOOTSTRAP_TOKEN_NAMESPACE,
    BOOTSTRAP_TOKEN_SECRET_PREFIX,
    BOOTSTRAP_TOKEN_SECRET_TYPE,
    BOOTSTRAP_TOKEN_TTL,
)

log = logging.getLogger(__name__)

TOKEN_ID_KEY = "token-id"
TOKEN_SECRET_KEY = "token-secret"
EXPIRATION_KEY = "expiration"
TOKEN_RE = re.compile(r"^([a-z0-9]{6})\.([a-z0-9]{16})$")
_ALPHABET = string.ascii_lowercase + string.digits


def generate_bootstrap_token() -> str:
    """Generate a random token of the form ``[a-z0-9]{6}.[a-z0-9]{16}``."""
    token_id = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    token_secret = "".join(secrets.choice(_ALPHABET) for _ in range(16))
    return f"{token_id}.{token_secret}"


class BootstrapToken(BaseModel):
    """A bootstrap token and its expiry.

    Attributes:
        token_id (str): public half of the token
        token_secret (SecretStr): private half of the token
        expiration (datetime): timezone-aware expiry
    """

    token_id: str
    token_secret: SecretStr
    expiration: datetime

    @field_validator("expiration")
    @classmethod
    def check_expiration(cls, v: datetime) -> datetime:
        """Validate the expiration field.

        Args:
            v (datetime): The value of the expiration field to validate.

        Returns:
            datetime: the expiration converted to UTC

        Raises:
            ValueError: If the expiration has no timezone.
        """
        if v.tzinfo is None:
            raise ValueError("expiration must be timezone aware")
        return v.astimezone(timezone.utc)

    @classmethod
    def parse(cls, token: str, expiration: datetime) -> "BootstrapToken":
        """Split a token into its halves.

        Raises:
            ValueError: if the token or the expiration is malformed
        """
        if not (match := TOKEN_RE.match(token)):
            raise ValueError("malformed bootstrap token")
        token_id, token_secret = match.groups()
        return cls(token_id=token_id, token_secret=SecretStr(token_secret), expiration=expiration)

    @property
    def token(self) -> SecretStr:
        """The ``id.secret`` form handed to joining nodes."""
        return SecretStr(f"{self.token_id}.{self.token_secret.get_secret_value()}")

    def to_secret(self) -> Secret:
        """Build the secret the API server reads bootstrap tokens from."""
        return Secret(
            metadata=ObjectMeta(
                name=BOOTSTRAP_TOKEN_SECRET_PREFIX + self.token_id,
                namespace=BOOTSTRAP_TOKEN_NAMESPACE,
            ),
            type=BOOTSTRAP_TOKEN_SECRET_TYPE,
            stringData={
                TOKEN_ID_KEY: self.token_id,
                TOKEN_SECRET_KEY: self.token_secret.get_secret_value(),
                EXPIRATION_KEY: self.expiration.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "usage-bootstrap-authentication": "true",
                "usage-bootstrap-signing": "true",
                "auth-extra-groups": BOOTSTRAP_TOKEN_GROUPS,
            },
        )


class BootstrapTokenIssuer:
    """Mints bootstrap tokens and stores them as secrets."""

    def __init__(self, client: Client, ttl: timedelta = BOOTSTRAP_TOKEN_TTL):
        """Initialise the BootstrapTokenIssuer.

        Args:
            client: Kubernetes client used to store the token secret
            ttl: lifetime of every issued token
        """
        self.client = client
        self.ttl = ttl

    def issue(self, ctx: Context) -> SecretStr:
        """Create a fresh token and persist it.

        Args:
            ctx: cancellation signal

        Returns:
            the token in its ``id.secret`` form

        Raises:
            InvariantViolation: if the generated token cannot be represented
            StoreError: if the token secret cannot be stored
        """
        expiration = datetime.now(timezone.utc) + self.ttl
        try:
            bootstrap = BootstrapToken.parse(generate_bootstrap_token(), expiration)
        except ValueError as e:
            raise InvariantViolation(
                f"unable to create token. there might be a bug somewhere: {e}"
            ) from e

        ctx.check()
        secret = bootstrap.to_secret()
        try:
            self.client.create(secret)
        except (ApiError, httpx.HTTPError) as e:
            raise StoreError(f"Failed to store bootstrap token secret: {e}") from e
        log.info("Created bootstrap token %s expiring %s", bootstrap.token_id, expiration)
        return bootstrap.token
