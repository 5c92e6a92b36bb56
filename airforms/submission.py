"""
Submission pipeline: validate a public form submission and write it to Airtable.

The server is authoritative on visibility. Every question is re-evaluated
with ``should_show_question`` against the submitted answers; nothing the
client says about which questions it showed is trusted.

Processing flow for ``SubmissionService.submit``:
    1. Load the form and its owner.
    2. Obtain a working Airtable token for the owner (refreshing if needed).
    3. Load the live column definitions of the form's table.
    4. For each question, in form order:
       a. Hidden: skip it. It is neither validated nor written, even if the
          client sent a value for it.
       b. Visible and required but empty: record ``"<label> is required"``.
       c. Visible and answered: run the type validator for the question.
    5. Any errors: raise ``SubmissionValidationError`` with all of them.
    6. Create the Airtable record, then store the response.
"""

from __future__ import annotations

import logging
from typing import Any

from airforms.airtable import AirtableClient
from airforms.auth import TokenManager
from airforms.errors import AirformsError
from airforms.logic import get_validator, is_empty_answer, should_show_question
from airforms.models import AirtableField, Form, FormResponse
from airforms.repo import Repository

logger = logging.getLogger(__name__)


class FormNotFoundError(AirformsError):
    """Raised when a form id does not resolve to a stored form."""

    pass


class SubmissionValidationError(AirformsError):
    """Raised when a submission fails validation.

    ``errors`` holds one human-readable message per failed question.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


def build_airtable_fields(
    form: Form,
    answers: dict[str, Any],
    field_defs: dict[str, AirtableField],
) -> tuple[dict[str, Any], list[str]]:
    """Validate ``answers`` against ``form`` and build the record's cells.

    Parameters
    ----------
    form : Form
        The form being submitted.
    answers : dict
        The full answer payload sent by the client.
    field_defs : dict[str, AirtableField]
        Live Airtable column definitions keyed by field id.

    Returns
    -------
    tuple[dict[str, Any], list[str]]
        ``(airtable_fields, errors)``. ``airtable_fields`` maps Airtable
        field ids to cell values; only visible, answered questions appear.
    """
    airtable_fields: dict[str, Any] = {}
    errors: list[str] = []

    for question in form.questions:
        if not should_show_question(question.conditional_rules, answers):
            if question.question_key in answers:
                logger.debug(
                    "Dropping answer to hidden question '%s' on form=%s",
                    question.question_key,
                    form.id,
                )
            continue

        answer = answers.get(question.question_key)

        if is_empty_answer(answer):
            if question.required:
                errors.append(f"{question.label} is required")
            continue

        outcome = get_validator(question.type).validate(
            question, answer, field_defs.get(question.airtable_field_id)
        )
        if outcome.ok:
            airtable_fields[question.airtable_field_id] = outcome.value
        else:
            errors.append(outcome.error)

    return airtable_fields, errors


class SubmissionService:
    """Validates public submissions and records them in Airtable.

    Parameters
    ----------
    repo : Repository
        Form, user and response storage.
    tokens : TokenManager
        Provides Airtable clients authorised as the form owner.
    """

    def __init__(self, repo: Repository, tokens: TokenManager) -> None:
        self._repo = repo
        self._tokens = tokens

    def load_form(self, form_id: str) -> Form:
        form = self._repo.get_form(form_id)
        if form is None:
            raise FormNotFoundError(f"Form not found: {form_id}")
        return form

    def submit(self, form_id: str, answers: dict[str, Any]) -> FormResponse:
        """Validate and store one submission.

        Raises
        ------
        FormNotFoundError
            If the form or its owner does not exist.
        SubmissionValidationError
            If any visible question fails validation.
        AuthenticationError
            If the owner's Airtable token cannot be refreshed.
        TokenExpiredError
            If Airtable rejects the token mid-submission.
        AirtableError
            If Airtable rejects the record.
        """
        form = self.load_form(form_id)
        owner = self._repo.get_user(form.owner_user_id)
        if owner is None:
            logger.error(
                "Form %s references missing owner %s", form.id, form.owner_user_id
            )
            raise FormNotFoundError(f"Form not found: {form_id}")

        client: AirtableClient = self._tokens.client_for(owner)
        field_defs = {
            f.id: f
            for f in client.list_fields(form.airtable_base_id, form.airtable_table_id)
        }

        airtable_fields, errors = build_airtable_fields(form, answers, field_defs)
        if errors:
            logger.info(
                "Rejected submission for form=%s with %d error(s)",
                form.id,
                len(errors),
            )
            raise SubmissionValidationError(errors)

        record = client.create_record(
            form.airtable_base_id, form.airtable_table_id, airtable_fields
        )
        response = self._repo.create_response(form.id, record["id"], answers)
        logger.info(
            "Stored response id=%s form=%s airtable_record=%s",
            response.id,
            form.id,
            record["id"],
        )
        return response
