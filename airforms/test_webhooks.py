"""
Tests for Airtable webhook intake.

Validates:
1. HMAC signature verification (skipped without a secret).
2. Payload parsing.
3. Event application: merge on create/update, status flip on delete,
   unknown records and event types ignored.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from airforms.models import FormResponse, ResponseStatus
from airforms.repo import Repository
from airforms.webhooks import (
    WebhookPayloadError,
    WebhookProcessor,
    WebhookSignatureError,
    compute_signature,
    parse_payload,
    verify_signature,
)

EARLIER = datetime(2026, 2, 5, 12, 0, 0, tzinfo=timezone.utc)
SECRET = "whsec_test"


def _make_response(**overrides) -> FormResponse:
    defaults = {
        "id": "resp_001",
        "form_id": "form_001",
        "airtable_record_id": "rec001",
        "answers": {"attending": "Yes", "diet": ["Vegan"]},
        "created_at": EARLIER,
    }
    defaults.update(overrides)
    return FormResponse(**defaults)


def _processor(stored: FormResponse | None) -> tuple[WebhookProcessor, MagicMock]:
    repo = MagicMock(spec=Repository)
    repo.get_response_by_record.return_value = stored
    return WebhookProcessor(repo), repo


# ---------------------------------------------------------------------------
# Tests: Signatures
# ---------------------------------------------------------------------------


class TestVerifySignature:
    def test_valid_signature(self) -> None:
        body = b'{"eventType": "record.deleted"}'
        verify_signature(SECRET, body, compute_signature(SECRET, body))

    def test_wrong_signature(self) -> None:
        body = b"{}"
        with pytest.raises(WebhookSignatureError, match="Invalid"):
            verify_signature(SECRET, body, compute_signature("other", body))

    def test_tampered_body(self) -> None:
        signature = compute_signature(SECRET, b'{"a": 1}')
        with pytest.raises(WebhookSignatureError):
            verify_signature(SECRET, b'{"a": 2}', signature)

    def test_missing_signature(self) -> None:
        with pytest.raises(WebhookSignatureError, match="Missing"):
            verify_signature(SECRET, b"{}", None)

    def test_no_secret_skips_verification(self) -> None:
        verify_signature("", b"{}", None)

    def test_signature_is_hex_sha256(self) -> None:
        signature = compute_signature(SECRET, b"{}")
        assert len(signature) == 64
        int(signature, 16)


class TestParsePayload:
    def test_object(self) -> None:
        assert parse_payload(b'{"recordId": "rec1"}') == {"recordId": "rec1"}

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\xff\xfe"])
    def test_rejected(self, body) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_payload(body)


# ---------------------------------------------------------------------------
# Tests: WebhookProcessor
# ---------------------------------------------------------------------------


class TestWebhookProcessor:
    def test_update_merges_changed_fields(self) -> None:
        processor, repo = _processor(_make_response())

        applied = processor.process(
            {
                "eventType": "record.updated",
                "recordId": "rec001",
                "changedFields": {"diet": ["None"], "notes": "late"},
            }
        )

        assert applied is True
        repo.get_response_by_record.assert_called_once_with("rec001")
        saved = repo.update_response.call_args.args[0]
        assert saved.answers == {
            "attending": "Yes",
            "diet": ["None"],
            "notes": "late",
        }
        assert saved.status == ResponseStatus.ACTIVE
        assert saved.updated_at is not None

    def test_created_reactivates_response(self) -> None:
        stored = _make_response(status=ResponseStatus.DELETED_IN_AIRTABLE)
        processor, repo = _processor(stored)

        processor.process({"eventType": "record.created", "recordId": "rec001"})

        saved = repo.update_response.call_args.args[0]
        assert saved.status == ResponseStatus.ACTIVE
        assert saved.answers == {"attending": "Yes", "diet": ["Vegan"]}

    def test_deleted_marks_status(self) -> None:
        processor, repo = _processor(_make_response())

        assert processor.process({"eventType": "record.deleted", "recordId": "rec001"})

        saved = repo.update_response.call_args.args[0]
        assert saved.status == ResponseStatus.DELETED_IN_AIRTABLE
        assert saved.answers == {"attending": "Yes", "diet": ["Vegan"]}

    def test_unknown_record_ignored(self) -> None:
        processor, repo = _processor(None)

        assert not processor.process(
            {"eventType": "record.updated", "recordId": "recOther"}
        )
        repo.update_response.assert_not_called()

    @pytest.mark.parametrize(
        "payload",
        [
            {"eventType": "table.updated", "recordId": "rec001"},
            {"recordId": "rec001"},
            {"eventType": "record.updated"},
        ],
    )
    def test_ignored_events(self, payload) -> None:
        processor, repo = _processor(_make_response())
        assert processor.process(payload) is False
        repo.update_response.assert_not_called()

    def test_signed_round_trip_through_parse(self) -> None:
        body = json.dumps({"eventType": "record.deleted", "recordId": "rec001"}).encode()
        verify_signature(SECRET, body, compute_signature(SECRET, body))
        processor, repo = _processor(_make_response())

        assert processor.process(parse_payload(body)) is True
        repo.update_response.assert_called_once()
