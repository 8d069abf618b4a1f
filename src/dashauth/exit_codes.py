"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to one error category and is referenced by the matching
:class:`~dashauth.exceptions.DashauthError` subclass, so shell wrappers can
tell a rejected sign-in from an unreachable backend without parsing stderr.

Example::

    $ dashauth token google personal
    $ echo $?
    6   # EXIT_NETWORK_FAILURE -- the credential endpoint was unreachable
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_AUTH_FAILURE = 3
"""Sign-in failed or the backend rejected the presented token."""

EXIT_PROVIDER_UNAVAILABLE = 4
"""No authentication provider can run on this host."""

EXIT_CONFIG_ERROR = 5
"""The backend endpoint or a provider is misconfigured."""

EXIT_NETWORK_FAILURE = 6
"""A transport error or non-2xx response from a remote endpoint."""

EXIT_CANCELLED = 130
"""The user aborted the flow (same code as an interrupted process)."""
