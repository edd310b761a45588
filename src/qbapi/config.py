"""
qbapi configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_SCOPE = (
    "com.intuit.quickbooks.accounting com.intuit.quickbooks.payment "
    "openid profile email phone address"
)

DEFAULT_TIMEOUT = 60.0

_DISCOVERY_URLS = {
    "sandbox": "https://developer.api.intuit.com/.well-known/openid_sandbox_configuration",
    "production": "https://developer.api.intuit.com/.well-known/openid_configuration",
}

_API_URLS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}

_ALIASES = {
    "prod": "production",
    "live": "production",
    "sbx": "sandbox",
    "dev": "sandbox",
}

# Environment variable -> config field
_ENV_VARS = {
    "QBAPI_CLIENT_ID": "client_id",
    "QBAPI_CLIENT_SECRET": "client_secret",
    "QBAPI_ENVIRONMENT": "environment",
    "QBAPI_REALM_ID": "realm_id",
    "QBAPI_REDIRECT_URI": "redirect_uri",
    "QBAPI_ACCESS_TOKEN": "access_token",
    "QBAPI_REFRESH_TOKEN": "refresh_token",
}


class Environment(str, Enum):
    """QuickBooks deployment environment."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @property
    def discovery_url(self) -> str:
        """Well-known OpenID discovery document for this environment."""
        return _DISCOVERY_URLS[self.value]

    @property
    def api_url(self) -> str:
        """Base URL of the accounting API for this environment."""
        return _API_URLS[self.value]

    @classmethod
    def parse(cls, value: str | Environment) -> Environment:
        """Resolve an environment from its name or a common alias."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        return cls(_ALIASES.get(name, name))


class QuickBooksConfig(BaseModel):
    """Root configuration for a QuickBooks API client."""

    client_id: str = Field(default="", description="OAuth2 client id of the Intuit app")
    client_secret: str = Field(default="", description="OAuth2 client secret")
    environment: Environment = Field(default=Environment.SANDBOX)
    realm_id: str | None = Field(default=None, description="Company id requests are scoped to")
    redirect_uri: str | None = Field(default=None, description="Registered OAuth2 redirect URI")
    scope: str = Field(default=DEFAULT_SCOPE)

    # Tokens issued earlier; storing them is the host's responsibility
    access_token: str | None = None
    refresh_token: str | None = None

    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Request timeout in seconds")
    verify_tls: bool = Field(
        default=True,
        description="Verify TLS certificates. Only disable against a trusted test proxy.",
    )
    require_realm_id: bool = Field(
        default=False,
        description="Fail before sending a company-scoped call that has no realm id",
    )

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> QuickBooksConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        for var, field_name in _ENV_VARS.items():
            value = os.environ.get(var)
            if value:
                data[field_name] = value

        env_verify = os.environ.get("QBAPI_VERIFY_TLS")
        if env_verify:
            data["verify_tls"] = env_verify.lower() not in ("0", "false", "no")

        # 3. Apply keyword overrides
        data.update({k: v for k, v in overrides.items() if v is not None})

        if data.get("environment") is not None:
            data["environment"] = Environment.parse(data["environment"])

        return cls.model_validate(data)
