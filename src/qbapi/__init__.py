"""
qbapi: QuickBooks Online API client.

OAuth2 endpoint discovery, token exchange and authenticated,
company-scoped requests with normalized fault handling.
"""

__version__ = "0.1.0"
__all__ = [
    "ApiError",
    "AuthError",
    "Credentials",
    "DiscoveryError",
    "EndpointCache",
    "Environment",
    "MissingRealmIdError",
    "NetworkError",
    "QuickBooksAPI",
    "QuickBooksConfig",
    "QuickBooksError",
    "Token",
]

from qbapi.auth import Credentials, EndpointCache, Token  # noqa: E402
from qbapi.client import QuickBooksAPI  # noqa: E402
from qbapi.config import Environment, QuickBooksConfig  # noqa: E402
from qbapi.exceptions import (  # noqa: E402
    ApiError,
    AuthError,
    DiscoveryError,
    MissingRealmIdError,
    NetworkError,
    QuickBooksError,
)
