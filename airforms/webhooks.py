"""
Airtable webhook intake.

Keeps stored responses in step with edits made directly in Airtable:
    - ``record.created`` / ``record.updated``: merge ``changedFields`` into
      the stored answers and mark the response ``active``.
    - ``record.deleted``: mark the response ``deletedInAirtable``.

Events for records that did not originate from a form submission, and
event types not listed above, are acknowledged and ignored.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any

from airforms.errors import AirformsError
from airforms.models import ResponseStatus
from airforms.repo import Repository

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-airtable-signature"

_UPSERT_EVENTS = ("record.created", "record.updated")
_DELETE_EVENT = "record.deleted"


class WebhookSignatureError(AirformsError):
    """Raised when a webhook signature is missing or does not match."""

    pass


class WebhookPayloadError(AirformsError):
    """Raised when a webhook body is not a JSON object."""

    pass


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> None:
    """Check the webhook signature against the raw body.

    Verification is skipped when ``secret`` is empty.

    Raises
    ------
    WebhookSignatureError
        If a secret is configured and the signature is missing or wrong.
    """
    if not secret:
        return
    if not signature:
        raise WebhookSignatureError("Missing signature")
    expected = compute_signature(secret, body)
    if not hmac.compare_digest(signature, expected):
        raise WebhookSignatureError("Invalid signature")


def parse_payload(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise WebhookPayloadError(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")
    return payload


class WebhookProcessor:
    """Applies Airtable record events to stored responses.

    Parameters
    ----------
    repo : Repository
        Response storage.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def process(self, payload: dict[str, Any]) -> bool:
        """Apply one webhook event.

        Returns
        -------
        bool
            True if a stored response was updated.
        """
        event_type = payload.get("eventType")
        record_id = payload.get("recordId")

        if event_type not in _UPSERT_EVENTS and event_type != _DELETE_EVENT:
            logger.debug("Ignoring webhook event type=%s", event_type)
            return False
        if not record_id:
            logger.warning("Webhook event %s has no recordId", event_type)
            return False

        response = self._repo.get_response_by_record(record_id)
        if response is None:
            logger.debug("No stored response for airtable_record=%s", record_id)
            return False

        if event_type == _DELETE_EVENT:
            response.status = ResponseStatus.DELETED_IN_AIRTABLE
        else:
            changed = payload.get("changedFields")
            if isinstance(changed, dict) and changed:
                response.answers = {**response.answers, **changed}
            response.status = ResponseStatus.ACTIVE

        response.updated_at = datetime.now(timezone.utc)
        self._repo.update_response(response)
        logger.info(
            "Applied %s to response id=%s (status=%s)",
            event_type,
            response.id,
            response.status.value,
        )
        return True
