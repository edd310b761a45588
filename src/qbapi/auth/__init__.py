"""
qbapi authentication.

Endpoint discovery and the OAuth2 authorization-code / refresh-token flows
for QuickBooks Online.
"""

from qbapi.auth.discovery import (
    EndpointCache,
    EndpointDiscovery,
    EndpointSet,
    default_cache,
)
from qbapi.auth.oauth2 import Credentials, OAuth2TokenManager, Token

__all__ = [
    "Credentials",
    "EndpointCache",
    "EndpointDiscovery",
    "EndpointSet",
    "OAuth2TokenManager",
    "Token",
    "default_cache",
]
