"""
Configuration loader for the Airforms service.

Uses Pydantic Settings for environment variable parsing. Outside the local
environment, any ``<NAME>_SSM_PARAM`` variable is treated as a pointer into
AWS Systems Manager Parameter Store and the fetched value overrides
``<NAME>``. The settings object is passed explicitly into collaborators at
construction time; nothing else reads the process environment.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from functools import lru_cache

import boto3
from pydantic import SecretStr
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

AIRTABLE_OAUTH_SCOPES = "data.records:read data.records:write schema.bases:read"

SSM_SUFFIX = "_SSM_PARAM"
SSM_BATCH_SIZE = 10


class Settings(BaseSettings):
    """Airforms configuration loaded from environment variables."""

    database_url: SecretStr
    aws_region: str = "us-east-1"

    # Airtable OAuth app
    airtable_client_id: str = ""
    airtable_client_secret: SecretStr = SecretStr("")
    airtable_oauth_callback_url: str = ""
    airtable_webhook_secret: SecretStr = SecretStr("")

    # HTTP surface
    frontend_url: str = "http://localhost:5173"
    session_ttl_days: int = 7
    secure_cookies: bool = False
    http_timeout_seconds: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def oauth_configured(self) -> bool:
        return bool(
            self.airtable_client_id
            and self.airtable_client_secret.get_secret_value()
            and self.airtable_oauth_callback_url
        )


def ssm_references(environ: Mapping[str, str]) -> dict[str, str]:
    """Map setting names to the SSM parameter names that hold their values.

    ``AIRTABLE_CLIENT_SECRET_SSM_PARAM=/airforms/prod/client-secret`` yields
    ``{"airtable_client_secret": "/airforms/prod/client-secret"}``.
    """
    return {
        key[: -len(SSM_SUFFIX)].lower(): value
        for key, value in environ.items()
        if key.endswith(SSM_SUFFIX) and value
    }


def fetch_ssm_values(references: Mapping[str, str], region: str) -> dict[str, str]:
    """Fetch decrypted values for ``references`` from Parameter Store.

    Returns a mapping of setting name to value. Parameters SSM reports as
    invalid are logged and left out, so the plain environment value (if
    any) still applies.
    """
    if not references:
        return {}

    ssm = boto3.client("ssm", region_name=region)
    names = sorted(set(references.values()))
    found: dict[str, str] = {}
    for start in range(0, len(names), SSM_BATCH_SIZE):
        response = ssm.get_parameters(
            Names=names[start : start + SSM_BATCH_SIZE], WithDecryption=True
        )
        found.update({p["Name"]: p["Value"] for p in response["Parameters"]})
        for missing in response.get("InvalidParameters", []):
            logger.warning("SSM parameter not found: %s", missing)

    return {
        setting: found[param]
        for setting, param in references.items()
        if param in found
    }


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings.

    ``APP_ENV`` defaults to ``local``, in which case SSM is never contacted.
    """
    overrides: dict[str, str] = {}
    if os.environ.get("APP_ENV", "local") != "local":
        overrides = fetch_ssm_values(
            ssm_references(os.environ),
            region=os.environ.get("AWS_REGION", "us-east-1"),
        )
        logger.info("Resolved %d settings from SSM", len(overrides))

    return Settings(**overrides)  # type: ignore[arg-type]
