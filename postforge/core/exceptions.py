# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Custom exceptions for Postforge."""


class PostforgeError(Exception):
    """Base exception for all Postforge errors."""

    pass


class ConfigurationError(PostforgeError):
    """Raised when required configuration is missing or invalid."""

    pass


class StageError(PostforgeError):
    """Raised when a stage handler violates its contract.

    Attributes:
        step: Pipeline step whose handler misbehaved.
    """

    def __init__(self, step: str, message: str):
        """Initialize StageError.

        Args:
            step: Pipeline step name (e.g. "write").
            message: Description of the violation.
        """
        self.step = step
        super().__init__(f"Stage '{step}' failed: {message}")
