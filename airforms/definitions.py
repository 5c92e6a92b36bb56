"""
Validation of form definitions submitted by the form builder.

Checked on ``POST /forms`` before anything is stored. Stored forms are
trusted afterwards; the visibility evaluator still tolerates rule data that
drifted from this schema.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from airforms.errors import AirformsError
from airforms.models import ConditionLogic, ConditionOperator, Question, QuestionType

_SUPPORTED_TYPES = {t.value for t in QuestionType}
_OPERATORS = {op.value for op in ConditionOperator}
_LOGIC = {lg.value for lg in ConditionLogic}


class FormDefinitionError(AirformsError, ValueError):
    """Raised when a submitted form definition is malformed."""

    pass


def _validate_rules(rules: Any) -> None:
    if rules is None:
        return
    if not isinstance(rules, dict):
        raise FormDefinitionError("Invalid conditional rule format")

    logic = rules.get("logic")
    if logic is not None and logic not in _LOGIC:
        raise FormDefinitionError(f"Unsupported conditional logic: {logic}")

    conditions = rules.get("conditions")
    if conditions is None:
        return
    if not isinstance(conditions, list):
        raise FormDefinitionError("Invalid conditional rule format")

    for condition in conditions:
        if (
            not isinstance(condition, dict)
            or not condition.get("questionKey")
            or not condition.get("operator")
            or "value" not in condition
        ):
            raise FormDefinitionError("Invalid conditional rule format")
        if condition["operator"] not in _OPERATORS:
            raise FormDefinitionError(
                f"Unsupported condition operator: {condition['operator']}"
            )


def parse_questions(raw_questions: Any) -> list[Question]:
    """Validate the builder's question list and return parsed questions.

    Parameters
    ----------
    raw_questions : Any
        The ``questions`` array of the request body, in camelCase JSON shape.

    Raises
    ------
    FormDefinitionError
        With the first problem found.
    """
    if not isinstance(raw_questions, list):
        raise FormDefinitionError("Missing required fields")

    seen_keys: set[str] = set()
    questions: list[Question] = []

    for raw in raw_questions:
        if not isinstance(raw, dict) or not all(
            raw.get(k) for k in ("questionKey", "airtableFieldId", "label", "type")
        ):
            raise FormDefinitionError("Invalid question format")
        if raw["type"] not in _SUPPORTED_TYPES:
            raise FormDefinitionError(f"Unsupported question type: {raw['type']}")
        if raw["questionKey"] in seen_keys:
            raise FormDefinitionError(
                f"Duplicate question key: {raw['questionKey']}"
            )
        seen_keys.add(raw["questionKey"])

        _validate_rules(raw.get("conditionalRules"))

        try:
            questions.append(Question.model_validate(raw))
        except ValidationError as exc:
            raise FormDefinitionError("Invalid question format") from exc

    return questions
