"""
twapi_kit – high-level helpers for the Twitch Helix / Kraken / OAuth2 APIs.

Import the public surface like so:

    from twapi_kit import HelixClient, DefaultCredentialStore

Everything else (modules whose names start with “_”) is internal and
subject to change without notice.
"""

import logging as _logging
from importlib import metadata as _metadata

# ─────────────────────────────────────────────────────────────────────────────
# Re-export PUBLIC objects from the internal implementation modules
# ─────────────────────────────────────────────────────────────────────────────
from ._credentials import (ClientIdentity, CredentialRecord, CredentialStore,
                           DefaultCredentialStore)
from ._formatting import repeat_formatter, join_formatter
from ._pipeline import (FamilyConfig, RequestDescriptor, QueryPipeline,
                        HELIX, KRAKEN, AUTH)
from ._auth import Authenticator, TokenPair, build_session
from ._service import ServiceRegistry, UserIdCache
from ._helix import HelixClient
from ._kraken import KrakenClient
from ._errors import (TwapiError, InvalidArgument, TransportError, NotAuthorized,
                      RefreshFailed, RateLimited, NotFound, ApiError,
                      ErrorKind, LastError, raise_for_error)

__all__: list[str] = [
    "ClientIdentity",
    "CredentialRecord",
    "CredentialStore",
    "DefaultCredentialStore",
    "repeat_formatter",
    "join_formatter",
    "FamilyConfig",
    "RequestDescriptor",
    "QueryPipeline",
    "HELIX",
    "KRAKEN",
    "AUTH",
    "Authenticator",
    "TokenPair",
    "build_session",
    "ServiceRegistry",
    "UserIdCache",
    "HelixClient",
    "KrakenClient",
    "TwapiError",
    "InvalidArgument",
    "TransportError",
    "NotAuthorized",
    "RefreshFailed",
    "RateLimited",
    "NotFound",
    "ApiError",
    "ErrorKind",
    "LastError",
    "raise_for_error",
]

# Library logging stays silent until the application configures a handler
_logging.getLogger(__name__).addHandler(_logging.NullHandler())

# ─────────────────────────────────────────────────────────────────────────────
# Version handling
# ─────────────────────────────────────────────────────────────────────────────
try:
    # Normal installed case – read version from package metadata
    __version__: str = _metadata.version("twapi-kit")
except _metadata.PackageNotFoundError:
    # Editable/-e install while developing – fall back to __about__.py
    from .__about__ import __version__  # type: ignore[attr-defined]

# Clean up internal symbols so they don’t leak into dir(twapi_kit)
del _metadata, _logging
