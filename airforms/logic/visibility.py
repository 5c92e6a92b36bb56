"""
Conditional visibility evaluator for form questions.

Decides, given the answers collected so far, whether a question should be
shown. This is the single implementation shared by the render-time path
(``airforms.rendering``) and the submit-time path (``airforms.submission``);
both must reach the same verdict for the same answers.

Evaluation rules:
    - No rule set, or a rule set without conditions: always visible.
    - ``logic`` defaults to ``AND``; ``OR`` needs at least one passing condition.
    - A condition whose referenced answer is missing, ``None`` or ``""`` fails,
      whatever its operator. This includes ``notEquals``: an unanswered
      prerequisite hides the question instead of showing it.
    - ``equals``/``notEquals`` compare canonical string forms, so ``123``
      equals ``"123"``.
    - ``contains`` is a substring test, applied per element for list answers.
    - A condition without a ``value`` compares against ``"undefined"``, so
      ``equals`` fails and ``notEquals`` holds for any present answer.
    - Unknown operators and malformed conditions fail. Nothing here raises.

The evaluator is pure: it never mutates ``rules`` or ``answers`` and keeps
no state between calls.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel

from airforms.models import ConditionLogic, ConditionOperator

logger = logging.getLogger(__name__)

# String form of a condition value that was never supplied.
UNDEFINED_VALUE = "undefined"
_UNDEFINED = object()


# ---------------------------------------------------------------------------
# Value Helpers
# ---------------------------------------------------------------------------


def is_answer_present(value: Any) -> bool:
    """Return True unless the answer is missing (``None``) or ``""``."""
    return value is not None and value != ""


def to_comparable_string(value: Any) -> str:
    """Canonical string form used for every comparison.

    Matches what the browser client produces with ``String(value)``:
    booleans render as ``true``/``false``, integral floats drop the
    trailing ``.0`` and lists join their elements with commas.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if v is None else to_comparable_string(v) for v in value)
    if isinstance(value, Enum):
        return to_comparable_string(value.value)
    return str(value)


def _field(obj: Any, name: str, alias: str | None = None, missing: Any = None) -> Any:
    """Read ``name`` (or its camelCase ``alias``) from a model or a mapping.

    Returns ``missing`` when the field was never supplied.
    """
    if isinstance(obj, BaseModel):
        if name not in obj.model_fields_set:
            return missing
        return getattr(obj, name, missing)
    if isinstance(obj, Mapping):
        if alias is not None and alias in obj:
            return obj[alias]
        return obj.get(name, missing)
    return missing


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


# ---------------------------------------------------------------------------
# Condition Evaluation
# ---------------------------------------------------------------------------


def evaluate_condition(condition: Any, answers: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against the answers collected so far.

    Parameters
    ----------
    condition : Condition or mapping
        ``{"questionKey": ..., "operator": ..., "value": ...}``.
    answers : mapping
        ``question_key -> answer``. Missing keys count as unanswered.

    Returns
    -------
    bool
        True if the condition holds. Malformed conditions return False.
    """
    question_key = _field(condition, "question_key", "questionKey")
    operator = _field(condition, "operator")
    expected = _field(condition, "value", missing=_UNDEFINED)

    if not isinstance(question_key, str) or operator is None:
        return False

    answer = answers.get(question_key)
    if not is_answer_present(answer):
        return False

    if expected is _UNDEFINED:
        expected_str = UNDEFINED_VALUE
    else:
        expected_str = to_comparable_string(expected)

    if operator == ConditionOperator.EQUALS:
        return to_comparable_string(answer) == expected_str
    elif operator == ConditionOperator.NOT_EQUALS:
        return to_comparable_string(answer) != expected_str
    elif operator == ConditionOperator.CONTAINS:
        if _is_sequence(answer):
            return any(expected_str in to_comparable_string(item) for item in answer)
        return expected_str in to_comparable_string(answer)
    else:
        logger.warning(
            "Unknown operator '%s' in condition on question '%s'",
            operator,
            question_key,
        )
        return False


def should_show_question(rules: Any, answers: Mapping[str, Any] | None) -> bool:
    """Decide whether a question governed by ``rules`` is visible.

    Parameters
    ----------
    rules : ConditionalRuleSet, mapping or None
        The question's conditional rule set, as stored.
    answers : mapping or None
        Answers collected so far, keyed by question key.

    Returns
    -------
    bool
        True if the question should be shown (and validated on submit).
    """
    if rules is None:
        return True

    conditions = _field(rules, "conditions")
    if not _is_sequence(conditions) or len(conditions) == 0:
        return True

    if answers is None:
        answers = {}

    logic = _field(rules, "logic") or ConditionLogic.AND
    results = [evaluate_condition(c, answers) for c in conditions]

    if logic == ConditionLogic.OR:
        return any(results)
    return all(results)
