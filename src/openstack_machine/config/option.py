# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Accessor for actuator environment options in the right type."""

import logging
import os
from typing import TYPE_CHECKING, Mapping, Optional, Type

log = logging.getLogger(__name__)


class ActuatorOption:
    """A configuration value read from the controller's environment.

    Attributes:
        name (str): environment variable holding the value
        default: value used when the variable is unset or invalid
    """

    convert: Type = str

    def __init__(self, name: str, default):
        """Initialize an ActuatorOption.

        Args:
            name (str): The name of the environment variable.
            default: Fallback value when the variable is missing or invalid.
        """
        self.name = name
        self.default = default

    def validate(self, value) -> bool:
        """Whether a converted value is acceptable."""
        return True

    def load(self, environ: Optional[Mapping[str, str]] = None) -> str | bool | int:
        """Load the value of the option from the environment.

        Args:
            environ: mapping to read from, defaults to ``os.environ``

        Returns:
            str | bool | int : The converted value, or the default when the
            variable is unset, empty or cannot be converted.
        """
        environ = os.environ if environ is None else environ
        if not (raw := environ.get(self.name, "").strip()):
            return self.default
        try:
            value = self.convert(raw)
        except ValueError:
            log.warning("Ignoring invalid %s=%r, using %s", self.name, raw, self.default)
            return self.default
        if not self.validate(value):
            log.warning("Ignoring invalid %s=%r, using %s", self.name, raw, self.default)
            return self.default
        return value


class StrOption(ActuatorOption):
    """Option of type string."""

    if TYPE_CHECKING:  # pragma: no cover

        def load(self: "StrOption", environ: Optional[Mapping[str, str]] = None) -> str:
            """Type hint for the load method to return a string."""
            ...


class IntOption(ActuatorOption):
    """Option of type positive integer."""

    convert = int

    def validate(self, value) -> bool:
        """Only positive values are accepted."""
        return value > 0

    if TYPE_CHECKING:  # pragma: no cover

        def load(self: "IntOption", environ: Optional[Mapping[str, str]] = None) -> int:
            """Type hint for the load method to return an integer."""
            ...
