"""Service credential lifecycle and the authorized operations built on it.

- :class:`BackendClient` -- POSTs operations to the credential endpoint.
- :class:`ServiceCredentialCache` -- reuses a credential across runs.
- :class:`CredentialServiceCore` -- negotiates and renews the credential.
- :class:`CredentialOperations` -- token cache, request deduplication,
  settings.
- :class:`AccountManager` -- secondary accounts stored with the backend.
"""

from dashauth.credentials.accounts import AccountManager
from dashauth.credentials.backend import BackendClient
from dashauth.credentials.core import CredentialServiceCore, decode_expiry_ms
from dashauth.credentials.credential_cache import ServiceCredentialCache
from dashauth.credentials.operations import CredentialOperations

__all__ = [
    "AccountManager",
    "BackendClient",
    "CredentialOperations",
    "CredentialServiceCore",
    "ServiceCredentialCache",
    "decode_expiry_ms",
]
