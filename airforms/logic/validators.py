"""
Per-question-type answer validation.

Each ``QuestionType`` has exactly one ``AnswerValidator`` that checks a
present answer and converts it into the cell value written to Airtable.
Validators are looked up through ``get_validator``; adding a question type
means adding a class and a registry entry, not another branch in the
submission path.

Required-ness is not handled here: the caller checks ``is_empty_answer``
before invoking a validator, and only for visible questions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from airforms.models import AirtableField, Question, QuestionType


def is_empty_answer(value: Any) -> bool:
    """An answer is empty when it is ``None``, ``""`` or an empty list."""
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return True
    return False


@dataclass(frozen=True)
class FieldOutcome:
    """Result of validating one answer: a cell value or an error message."""

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def accept(cls, value: Any) -> FieldOutcome:
        return cls(value=value)

    @classmethod
    def reject(cls, message: str) -> FieldOutcome:
        return cls(error=message)


class AnswerValidator(ABC):
    """Validates a present answer for one question type."""

    question_type: QuestionType

    @abstractmethod
    def validate(
        self,
        question: Question,
        answer: Any,
        field: AirtableField | None,
    ) -> FieldOutcome:
        """Validate ``answer`` and convert it to an Airtable cell value.

        Parameters
        ----------
        question : Question
            The question being answered.
        answer : Any
            The submitted answer. Never empty when called.
        field : AirtableField or None
            The live Airtable column definition, if it could be resolved.
            Choice checks are skipped when it is missing.
        """
        ...


class TextValidator(AnswerValidator):
    """Single-line and long text: any present value, written as a string."""

    def __init__(self, question_type: QuestionType) -> None:
        self.question_type = question_type

    def validate(self, question, answer, field):
        if isinstance(answer, bool):
            return FieldOutcome.accept("true" if answer else "false")
        return FieldOutcome.accept(str(answer))


class SingleSelectValidator(AnswerValidator):
    question_type = QuestionType.SINGLE_SELECT

    def validate(self, question, answer, field):
        choices = field.choice_names() if field is not None else None
        if choices is not None and answer not in choices:
            return FieldOutcome.reject(f"{question.label}: invalid choice")
        return FieldOutcome.accept(answer)


class MultipleSelectsValidator(AnswerValidator):
    question_type = QuestionType.MULTIPLE_SELECTS

    def validate(self, question, answer, field):
        if not isinstance(answer, list):
            return FieldOutcome.reject(f"{question.label}: must be an array")

        choices = field.choice_names() if field is not None else None
        if choices is not None:
            invalid = [a for a in answer if a not in choices]
            if invalid:
                return FieldOutcome.reject(
                    f"{question.label}: invalid choices: "
                    + ", ".join(str(a) for a in invalid)
                )
        return FieldOutcome.accept(answer)


class AttachmentsValidator(AnswerValidator):
    """Attachments are submitted as URLs; Airtable fetches them itself."""

    question_type = QuestionType.ATTACHMENTS

    def validate(self, question, answer, field):
        if isinstance(answer, list):
            return FieldOutcome.accept([{"url": url} for url in answer])
        if isinstance(answer, str):
            return FieldOutcome.accept([{"url": answer}])
        return FieldOutcome.reject(
            f"{question.label}: must be a URL or array of URLs"
        )


_VALIDATORS: dict[QuestionType, AnswerValidator] = {
    QuestionType.SINGLE_LINE_TEXT: TextValidator(QuestionType.SINGLE_LINE_TEXT),
    QuestionType.LONG_TEXT: TextValidator(QuestionType.LONG_TEXT),
    QuestionType.SINGLE_SELECT: SingleSelectValidator(),
    QuestionType.MULTIPLE_SELECTS: MultipleSelectsValidator(),
    QuestionType.ATTACHMENTS: AttachmentsValidator(),
}


def get_validator(question_type: QuestionType) -> AnswerValidator:
    """Return the validator for ``question_type``.

    Raises
    ------
    KeyError
        If no validator is registered for the type.
    """
    return _VALIDATORS[question_type]
