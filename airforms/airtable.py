"""
Airtable REST client.

Thin wrapper over the Airtable Web API (metadata and records endpoints)
using ``requests``. A 401 from Airtable surfaces as ``TokenExpiredError`` so
that callers can refresh the OAuth token and retry; every other HTTP
failure surfaces as ``AirtableError``.

Also owns the mapping from Airtable column types to the question types a
form can render.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from airforms.errors import AirformsError
from airforms.models import AirtableField, QuestionType

logger = logging.getLogger(__name__)

AIRTABLE_API_URL = "https://api.airtable.com/v0"

# Airtable column type -> question type. Columns not listed here cannot be
# placed on a form.
AIRTABLE_TYPE_MAP: dict[str, QuestionType] = {
    "singleLineText": QuestionType.SINGLE_LINE_TEXT,
    "multilineText": QuestionType.LONG_TEXT,
    "singleSelect": QuestionType.SINGLE_SELECT,
    "multipleSelects": QuestionType.MULTIPLE_SELECTS,
    "multipleRecordLinks": QuestionType.MULTIPLE_SELECTS,
    "attachment": QuestionType.ATTACHMENTS,
    "multipleAttachments": QuestionType.ATTACHMENTS,
}


class AirtableError(AirformsError):
    """Raised when an Airtable API call fails for a reason other than auth."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TokenExpiredError(AirtableError):
    """Raised when Airtable rejects the access token (HTTP 401).

    Callers holding a refresh token should refresh and retry once.
    """

    pass


def map_airtable_field_type(airtable_type: str) -> QuestionType | None:
    """Return the question type for an Airtable column type, or None."""
    return AIRTABLE_TYPE_MAP.get(airtable_type)


def is_supported_field_type(airtable_type: str) -> bool:
    return map_airtable_field_type(airtable_type) is not None


class AirtableClient:
    """Airtable Web API client bound to one OAuth access token.

    Parameters
    ----------
    access_token : str
        OAuth bearer token for the connected user.
    session : requests.Session or None
        HTTP session to use. A new one is created if omitted.
    timeout : float
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        access_token: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._access_token = access_token
        self._session = session or requests.Session()
        self._timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{AIRTABLE_API_URL}{path}"
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        try:
            resp = self._session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise AirtableError(f"Airtable request failed: {exc}") from exc

        if resp.status_code == 401:
            raise TokenExpiredError("TOKEN_EXPIRED", status_code=401)
        if resp.status_code >= 400:
            logger.warning(
                "Airtable %s %s failed: status=%d body=%s",
                method.upper(),
                path,
                resp.status_code,
                resp.text[:500],
            )
            raise AirtableError(
                f"Airtable {method.upper()} {path} failed with status "
                f"{resp.status_code}",
                status_code=resp.status_code,
            )
        return resp.json()

    def whoami(self) -> dict[str, Any]:
        """Return the profile of the token's owner."""
        return self._request("get", "/meta/whoami")

    def list_bases(self) -> list[dict[str, Any]]:
        return self._request("get", "/meta/bases").get("bases", [])

    def list_tables(self, base_id: str) -> list[dict[str, Any]]:
        return self._request("get", f"/meta/bases/{base_id}/tables").get("tables", [])

    def list_fields(self, base_id: str, table_id: str) -> list[AirtableField]:
        """Return the column definitions of one table.

        The metadata API has no single-table endpoint, so the base's table
        list is fetched and the matching table (by id or name) is picked.
        An unknown table yields an empty list.
        """
        for table in self.list_tables(base_id):
            if table.get("id") == table_id or table.get("name") == table_id:
                return [AirtableField(**f) for f in table.get("fields", [])]
        logger.warning("Table %s not found in base %s", table_id, base_id)
        return []

    def create_record(
        self, base_id: str, table_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Create one record and return Airtable's record payload (with ``id``)."""
        return self._request("post", f"/{base_id}/{table_id}", {"fields": fields})
