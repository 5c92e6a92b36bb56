"""
Render-time form processing.

Decides which questions of a form are shown for the answers entered so far
and runs the client-side required-field check. Visibility is delegated to
``should_show_question``, the same function the submission path uses, so
a question visible here is visible there for the same answers.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from airforms.logic import is_empty_answer, should_show_question
from airforms.models import Form, Question

REQUIRED_MESSAGE = "This field is required"


class RenderedForm(BaseModel):
    """Form state as the viewer should display it."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}

    form_id: str
    title: str
    questions: list[Question]
    answers: dict[str, Any]
    errors: dict[str, str] = {}


def visible_questions(form: Form, answers: dict[str, Any]) -> list[Question]:
    """Return the questions to display, in form order."""
    return [
        q for q in form.questions if should_show_question(q.conditional_rules, answers)
    ]


def prune_hidden_answers(form: Form, answers: dict[str, Any]) -> dict[str, Any]:
    """Drop answers to questions that are currently hidden.

    Visibility is judged against the full incoming ``answers``, matching
    what the submission path sees. Keys that belong to no question are
    dropped as well.
    """
    shown = {q.question_key for q in visible_questions(form, answers)}
    return {k: v for k, v in answers.items() if k in shown}


def validate_visible_required(
    form: Form, answers: dict[str, Any]
) -> dict[str, str]:
    """Return ``question_key -> message`` for visible required questions left empty."""
    errors: dict[str, str] = {}
    for q in visible_questions(form, answers):
        if q.required and is_empty_answer(answers.get(q.question_key)):
            errors[q.question_key] = REQUIRED_MESSAGE
    return errors


def render_form(
    form: Form, answers: dict[str, Any], check_required: bool = False
) -> RenderedForm:
    """Build the display state of ``form`` for ``answers``.

    Parameters
    ----------
    form : Form
        The form definition.
    answers : dict
        Answers entered so far.
    check_required : bool
        If True, include required-field errors (as on a submit attempt).
    """
    return RenderedForm(
        form_id=form.id,
        title=form.title,
        questions=visible_questions(form, answers),
        answers=prune_hidden_answers(form, answers),
        errors=validate_visible_required(form, answers) if check_required else {},
    )
