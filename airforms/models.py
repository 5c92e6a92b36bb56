"""
Domain models for the Airforms service.

Pydantic v2 models for forms, questions, conditional visibility rules,
stored responses and connected Airtable users.

**CRITICAL**: JSON field names use ``camelCase`` (``questionKey``,
``airtableFieldId``, ``conditionalRules``) because stored form definitions and
the browser client both speak that shape. Python attribute names stay
``snake_case``; ``populate_by_name`` accepts either on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

_MODEL_CONFIG = {"populate_by_name": True, "alias_generator": to_camel}

# Scalar, or a sequence of scalars for multi-select / attachment answers.
AnswerValue = Union[str, int, float, bool, list[Any], None]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QuestionType(str, Enum):
    """Input control type of a question. Values match the stored form JSON."""

    SINGLE_LINE_TEXT = "singleLineText"
    LONG_TEXT = "longText"
    SINGLE_SELECT = "singleSelect"
    MULTIPLE_SELECTS = "multipleSelects"
    ATTACHMENTS = "attachments"


class ConditionLogic(str, Enum):
    """How the conditions of a rule set are combined."""

    AND = "AND"
    OR = "OR"


class ConditionOperator(str, Enum):
    """Comparison applied between a prior answer and a literal value."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"


class ResponseStatus(str, Enum):
    """Lifecycle status of a stored response."""

    ACTIVE = "active"
    DELETED_IN_AIRTABLE = "deletedInAirtable"


# ---------------------------------------------------------------------------
# Conditional Visibility
# ---------------------------------------------------------------------------


class Condition(BaseModel):
    """A single comparison between a prior answer and a literal value.

    ``operator`` is a plain ``str`` rather than ``ConditionOperator`` so that
    stored rules which drifted from the current schema still load; the
    evaluator resolves anything it does not understand to ``False``. An
    omitted ``value`` is distinct from an explicit ``null`` (see
    ``model_fields_set``).
    """

    model_config = _MODEL_CONFIG

    question_key: str | None = None
    operator: str | None = None
    value: Any = None


class ConditionalRuleSet(BaseModel):
    """Flat list of conditions combined by a single ``AND``/``OR`` operator.

    ``logic`` defaults to ``AND`` when absent. Condition order is preserved
    for the form builder but does not affect the result.
    """

    model_config = _MODEL_CONFIG

    logic: str | None = None
    conditions: list[Condition] = []


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------


class Question(BaseModel):
    """One form field, mapped to one Airtable column."""

    model_config = _MODEL_CONFIG

    question_key: str
    airtable_field_id: str
    label: str
    type: QuestionType
    required: bool = False
    conditional_rules: ConditionalRuleSet | None = None
    options: dict[str, Any] = {}

    @field_validator("conditional_rules", mode="wrap")
    @classmethod
    def _keep_drifted_rules(cls, value: Any, handler: Any) -> Any:
        """Keep stored rule data that no longer fits ``ConditionalRuleSet`` as-is.

        The visibility evaluator reads raw mappings too, and resolves
        anything it cannot interpret without raising.
        """
        try:
            return handler(value)
        except ValidationError:
            return value

    @field_serializer("conditional_rules")
    def _dump_rules(self, rules: Any, info: Any) -> Any:
        if isinstance(rules, BaseModel):
            return rules.model_dump(
                mode=info.mode,
                by_alias=bool(info.by_alias),
                exclude_unset=info.exclude_unset,
            )
        return rules


class Form(BaseModel):
    """A published form bound to one Airtable table."""

    model_config = _MODEL_CONFIG

    id: str
    owner_user_id: str
    airtable_base_id: str
    airtable_table_id: str
    title: str
    questions: list[Question] = []

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def question(self, question_key: str) -> Question | None:
        for q in self.questions:
            if q.question_key == question_key:
                return q
        return None


class FormResponse(BaseModel):
    """A submission persisted after its Airtable record was created."""

    model_config = _MODEL_CONFIG

    id: str
    form_id: str
    airtable_record_id: str
    answers: dict[str, Any] = {}
    status: ResponseStatus = ResponseStatus.ACTIVE

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Users & Sessions
# ---------------------------------------------------------------------------


class User(BaseModel):
    """A connected Airtable account.

    ``access_token`` and ``refresh_token`` are never serialized to clients;
    use ``public_dict()`` for API output.
    """

    model_config = _MODEL_CONFIG

    id: str
    airtable_user_id: str
    profile: dict[str, Any] = {}
    access_token: str
    refresh_token: str
    last_login_at: datetime | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    def public_dict(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"access_token", "refresh_token"},
        )


class Session(BaseModel):
    """An opaque login session bound to a user."""

    model_config = _MODEL_CONFIG

    token: str
    user_id: str
    expires_at: datetime


class TokenSet(BaseModel):
    """Token endpoint response from Airtable OAuth.

    Field names follow the OAuth wire format (``access_token``), so no
    camelCase alias is applied here.
    """

    model_config = {"populate_by_name": True}

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None


# ---------------------------------------------------------------------------
# Airtable Schema
# ---------------------------------------------------------------------------


class AirtableField(BaseModel):
    """A column definition as returned by the Airtable metadata API."""

    model_config = {"populate_by_name": True}

    id: str
    name: str
    type: str
    options: dict[str, Any] | None = None

    def choice_names(self) -> list[str] | None:
        """Return the selectable choice names, or None if the field has none."""
        if not self.options or not self.options.get("choices"):
            return None
        names = []
        for choice in self.options["choices"]:
            if isinstance(choice, dict):
                names.append(choice.get("name"))
            else:
                names.append(choice)
        return names
