"""
Core form logic for the Airforms service.

This package contains the conditional visibility evaluator shared by the
render and submit paths, and the per-type answer validators.

Public API:
    - ``should_show_question`` -- Visibility of a question given answers so far.
    - ``evaluate_condition`` -- Single condition evaluation against answers.
    - ``get_validator`` -- Answer validator for a question type.
    - ``is_empty_answer`` -- Required-field emptiness check.
"""

from airforms.logic.validators import (
    AnswerValidator,
    FieldOutcome,
    get_validator,
    is_empty_answer,
)
from airforms.logic.visibility import (
    evaluate_condition,
    is_answer_present,
    should_show_question,
)

__all__ = [
    "should_show_question",
    "evaluate_condition",
    "is_answer_present",
    "AnswerValidator",
    "FieldOutcome",
    "get_validator",
    "is_empty_answer",
]
