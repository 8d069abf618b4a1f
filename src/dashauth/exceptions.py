"""Exception hierarchy for dashauth.

All exceptions inherit from :class:`DashauthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`dashauth.exit_codes`.
The CLI entry point in :func:`dashauth.app.main` catches ``DashauthError``
and exits with the matching code.

Subclass hierarchy::

    DashauthError (exit 1)
    +-- ConfigurationError     (exit 5)
    +-- ProviderUnavailable    (exit 4)
    +-- AuthenticationFailure  (exit 3)
    |   +-- NativeTimeout      (exit 3)
    +-- NetworkFailure         (exit 6)
    +-- Cancelled              (exit 130)

:class:`Cancelled` is a control-flow signal. Providers raise it when the
user aborts a flow and the coordinator converts it into a ``cancelled``
:class:`~dashauth.models.AuthResult`; it never escapes the coordinator.
"""

from __future__ import annotations

from typing import Optional

from dashauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NETWORK_FAILURE,
    EXIT_PROVIDER_UNAVAILABLE,
)


class DashauthError(Exception):
    """Base exception for all dashauth errors.

    Every subclass sets a class-level ``exit_code``. The CLI catches this
    exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(DashauthError):
    """Raised when the credential endpoint or a provider setting is missing or invalid."""

    exit_code = EXIT_CONFIG_ERROR


class ProviderUnavailable(DashauthError):
    """Raised when a provider's capability check fails on the current host."""

    exit_code = EXIT_PROVIDER_UNAVAILABLE


class AuthenticationFailure(DashauthError):
    """Raised when a token is absent or rejected, or a sign-in flow fails.

    Attributes:
        status_code: HTTP status when a remote endpoint did the rejecting.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, exit_code)
        self.status_code = status_code


class NativeTimeout(AuthenticationFailure):
    """Raised when the native bridge does not answer before its deadline."""


class NetworkFailure(DashauthError):
    """Raised on transport errors and non-2xx responses.

    Attributes:
        status_code: HTTP status of the failed response, or ``None`` for
            transport-level failures.
    """

    exit_code = EXIT_NETWORK_FAILURE

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, exit_code)
        self.status_code = status_code


class Cancelled(DashauthError):
    """Raised by a provider when the user aborts the sign-in flow."""

    exit_code = EXIT_CANCELLED
