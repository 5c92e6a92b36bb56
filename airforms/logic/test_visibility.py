"""
Unit tests for the conditional visibility evaluator.

Covers:
    - Absent rule sets and empty condition lists (always visible)
    - AND / OR combination and the AND default
    - equals / notEquals / contains operators
    - Missing-answer policy (fails every operator, including notEquals)
    - Numeric, boolean and list answers compared by string form
    - Malformed conditions and unknown operators
    - Purity: no mutation of inputs, identical results on repeat calls
    - Models and raw stored mappings evaluate identically
"""

from __future__ import annotations

import copy

import pytest

from airforms.logic.visibility import (
    evaluate_condition,
    is_answer_present,
    should_show_question,
    to_comparable_string,
)
from airforms.models import Condition, ConditionalRuleSet, ConditionLogic


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _cond(question_key: str, operator: str, value) -> dict:
    return {"questionKey": question_key, "operator": operator, "value": value}


def _rules(*conditions: dict, logic: str | None = "AND") -> dict:
    rules: dict = {"conditions": list(conditions)}
    if logic is not None:
        rules["logic"] = logic
    return rules


YES_NO = (_cond("q1", "equals", "yes"), _cond("q2", "equals", "no"))


# ---------------------------------------------------------------------------
# Tests: No Restriction
# ---------------------------------------------------------------------------


class TestAlwaysVisible:
    """Rule sets that impose no restriction."""

    @pytest.mark.parametrize("answers", [{}, {"q1": "yes"}, {"q1": None}])
    def test_none_rules(self, answers) -> None:
        assert should_show_question(None, answers) is True

    @pytest.mark.parametrize("logic", ["AND", "OR", None])
    def test_empty_conditions(self, logic) -> None:
        assert should_show_question(_rules(logic=logic), {}) is True
        assert should_show_question(_rules(logic=logic), {"q1": "x"}) is True

    def test_missing_conditions_key(self) -> None:
        assert should_show_question({"logic": "OR"}, {}) is True

    def test_conditions_not_a_list(self) -> None:
        assert should_show_question({"conditions": "q1 equals yes"}, {}) is True
        assert should_show_question({"conditions": {"q1": "yes"}}, {}) is True

    def test_empty_model_rule_set(self) -> None:
        assert should_show_question(ConditionalRuleSet(), {}) is True

    def test_none_answers_with_no_rules(self) -> None:
        assert should_show_question(None, None) is True


# ---------------------------------------------------------------------------
# Tests: Logic Combination
# ---------------------------------------------------------------------------


class TestLogic:
    """AND / OR combination."""

    def test_and_all_true(self) -> None:
        rules = _rules(*YES_NO, logic="AND")
        assert should_show_question(rules, {"q1": "yes", "q2": "no"}) is True

    def test_and_one_false(self) -> None:
        rules = _rules(*YES_NO, logic="AND")
        assert should_show_question(rules, {"q1": "yes", "q2": "yes"}) is False

    def test_or_one_true(self) -> None:
        rules = _rules(*YES_NO, logic="OR")
        assert should_show_question(rules, {"q1": "yes", "q2": "maybe"}) is True

    def test_or_none_true(self) -> None:
        rules = _rules(*YES_NO, logic="OR")
        assert should_show_question(rules, {"q1": "no", "q2": "maybe"}) is False

    def test_or_with_one_missing_answer(self) -> None:
        rules = _rules(*YES_NO, logic="OR")
        assert should_show_question(rules, {"q2": "no"}) is True

    @pytest.mark.parametrize(
        "answers",
        [
            {"q1": "yes", "q2": "no"},
            {"q1": "yes", "q2": "yes"},
            {"q1": "no", "q2": "no"},
            {},
        ],
    )
    def test_default_logic_matches_and(self, answers) -> None:
        assert should_show_question(_rules(*YES_NO, logic=None), answers) == (
            should_show_question(_rules(*YES_NO, logic="AND"), answers)
        )

    def test_unrecognised_logic_treated_as_and(self) -> None:
        rules = _rules(*YES_NO, logic="XOR")
        assert should_show_question(rules, {"q1": "yes", "q2": "maybe"}) is False
        assert should_show_question(rules, {"q1": "yes", "q2": "no"}) is True

    def test_enum_logic(self) -> None:
        rules = ConditionalRuleSet(
            logic=ConditionLogic.OR,
            conditions=[Condition.model_validate(c) for c in YES_NO],
        )
        assert should_show_question(rules, {"q1": "no", "q2": "no"}) is True


# ---------------------------------------------------------------------------
# Tests: Operators
# ---------------------------------------------------------------------------


class TestOperators:
    """equals / notEquals / contains semantics."""

    def test_equals(self) -> None:
        rules = _rules(_cond("q1", "equals", "test"))
        assert should_show_question(rules, {"q1": "test"}) is True
        assert should_show_question(rules, {"q1": "not-test"}) is False

    def test_equals_is_case_sensitive(self) -> None:
        rules = _rules(_cond("q1", "equals", "Yes"))
        assert should_show_question(rules, {"q1": "yes"}) is False

    def test_not_equals(self) -> None:
        rules = _rules(_cond("q1", "notEquals", "test"))
        assert should_show_question(rules, {"q1": "other"}) is True
        assert should_show_question(rules, {"q1": "test"}) is False

    @pytest.mark.parametrize(
        "answer", ["test", "other", 123, 0, False, True, 1.5, ["a", "b"]]
    )
    def test_equals_and_not_equals_are_complements(self, answer) -> None:
        for expected in ("test", "123", "0", "false", "1.5", "a,b"):
            eq = evaluate_condition(_cond("q1", "equals", expected), {"q1": answer})
            ne = evaluate_condition(_cond("q1", "notEquals", expected), {"q1": answer})
            assert eq is (not ne)

    def test_contains_string(self) -> None:
        rules = _rules(_cond("q1", "contains", "test"))
        assert should_show_question(rules, {"q1": "this is a test"}) is True
        assert should_show_question(rules, {"q1": "no match"}) is False

    def test_contains_list(self) -> None:
        rules = _rules(_cond("q1", "contains", "option1"))
        assert should_show_question(rules, {"q1": ["option1", "option2"]}) is True
        assert should_show_question(rules, {"q1": ["option2", "option3"]}) is False

    def test_contains_list_matches_substring_of_element(self) -> None:
        rules = _rules(_cond("q1", "contains", "opt"))
        assert should_show_question(rules, {"q1": ["my-option"]}) is True

    def test_contains_empty_list_is_false(self) -> None:
        rules = _rules(_cond("q1", "contains", "a"))
        assert should_show_question(rules, {"q1": []}) is False

    def test_contains_numeric_answer(self) -> None:
        rules = _rules(_cond("q1", "contains", "23"))
        assert should_show_question(rules, {"q1": 1234}) is True

    def test_unknown_operator(self) -> None:
        rules = _rules(_cond("q1", "greaterThan", "1"))
        assert should_show_question(rules, {"q1": "5"}) is False

    def test_operator_enum_value(self) -> None:
        cond = Condition(question_key="q1", operator="equals", value="x")
        assert evaluate_condition(cond, {"q1": "x"}) is True


# ---------------------------------------------------------------------------
# Tests: Missing Answers
# ---------------------------------------------------------------------------


class TestMissingAnswers:
    """Unanswered prerequisites fail every operator."""

    @pytest.mark.parametrize("answers", [{}, {"q1": None}, {"q1": ""}])
    @pytest.mark.parametrize("operator", ["equals", "notEquals", "contains"])
    def test_missing_answer_is_false(self, answers, operator) -> None:
        rules = _rules(_cond("q1", operator, "test"))
        assert should_show_question(rules, answers) is False

    def test_not_equals_missing_answer_hides_question(self) -> None:
        rules = _rules(_cond("q1", "notEquals", "test"))
        assert should_show_question(rules, {}) is False

    def test_none_answers_mapping(self) -> None:
        rules = _rules(_cond("q1", "equals", "x"))
        assert should_show_question(rules, None) is False

    def test_zero_and_false_are_present(self) -> None:
        assert is_answer_present(0) is True
        assert is_answer_present(False) is True
        assert is_answer_present([]) is True
        assert is_answer_present("") is False
        assert is_answer_present(None) is False


# ---------------------------------------------------------------------------
# Tests: Value Conversion
# ---------------------------------------------------------------------------


class TestStringConversion:
    """Answers and values are compared by canonical string form."""

    def test_numeric_answer_equals_string_value(self) -> None:
        rules = _rules(_cond("q1", "equals", "123"))
        assert should_show_question(rules, {"q1": 123}) is True
        assert should_show_question(rules, {"q1": "123"}) is True

    def test_numeric_value_equals_string_answer(self) -> None:
        rules = _rules(_cond("q1", "equals", 123))
        assert should_show_question(rules, {"q1": "123"}) is True

    def test_integral_float(self) -> None:
        rules = _rules(_cond("q1", "equals", "5"))
        assert should_show_question(rules, {"q1": 5.0}) is True

    def test_boolean_answer(self) -> None:
        rules = _rules(_cond("q1", "equals", "true"))
        assert should_show_question(rules, {"q1": True}) is True
        assert should_show_question(rules, {"q1": False}) is False

    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, "null"),
            (True, "true"),
            (False, "false"),
            (7, "7"),
            (7.0, "7"),
            (2.5, "2.5"),
            (float("nan"), "NaN"),
            (["a", 1, None], "a,1,"),
            ("text", "text"),
            (ConditionLogic.OR, "OR"),
        ],
    )
    def test_to_comparable_string(self, value, expected) -> None:
        assert to_comparable_string(value) == expected

    def test_list_answer_equals_joined_value(self) -> None:
        rules = _rules(_cond("q1", "equals", "a,b"))
        assert should_show_question(rules, {"q1": ["a", "b"]}) is True


# ---------------------------------------------------------------------------
# Tests: Omitted Value
# ---------------------------------------------------------------------------


class TestOmittedValue:
    """A condition without ``value`` compares against ``"undefined"``."""

    def test_not_equals_holds_for_present_answer(self) -> None:
        rules = {"conditions": [{"questionKey": "q1", "operator": "notEquals"}]}
        assert should_show_question(rules, {"q1": "x"}) is True

    def test_equals_fails_for_present_answer(self) -> None:
        rules = {"conditions": [{"questionKey": "q1", "operator": "equals"}]}
        assert should_show_question(rules, {"q1": "x"}) is False

    @pytest.mark.parametrize("answer", ["x", 0, False, ["a"], "undefined"])
    def test_equals_and_not_equals_stay_complements(self, answer) -> None:
        eq = evaluate_condition(
            {"questionKey": "q1", "operator": "equals"}, {"q1": answer}
        )
        ne = evaluate_condition(
            {"questionKey": "q1", "operator": "notEquals"}, {"q1": answer}
        )
        assert eq is (not ne)

    def test_omitted_value_still_needs_an_answer(self) -> None:
        rules = {"conditions": [{"questionKey": "q1", "operator": "notEquals"}]}
        assert should_show_question(rules, {}) is False

    def test_explicit_null_differs_from_omitted(self) -> None:
        cond = {"questionKey": "q1", "operator": "equals", "value": None}
        assert evaluate_condition(cond, {"q1": "null"}) is True
        assert evaluate_condition(cond, {"q1": "undefined"}) is False

    def test_model_without_value(self) -> None:
        cond = Condition(question_key="q1", operator="notEquals")
        assert evaluate_condition(cond, {"q1": "x"}) is True
        assert evaluate_condition(cond, {"q1": "undefined"}) is False


# ---------------------------------------------------------------------------
# Tests: Malformed Input
# ---------------------------------------------------------------------------


class TestMalformedConditions:
    """Bad stored data degrades to False per condition and never raises."""

    @pytest.mark.parametrize(
        "condition",
        [
            {"questionKey": "q1", "value": "x"},
            {"operator": "equals", "value": "x"},
            {"questionKey": 5, "operator": "equals", "value": "x"},
            "q1 equals x",
            None,
            42,
            ["q1", "equals", "x"],
        ],
    )
    def test_malformed_condition_is_false(self, condition) -> None:
        assert evaluate_condition(condition, {"q1": "x"}) is False

    def test_malformed_condition_fails_and(self) -> None:
        rules = {"conditions": [_cond("q1", "equals", "x"), {"questionKey": "q1"}]}
        assert should_show_question(rules, {"q1": "x"}) is False

    def test_malformed_condition_ignored_by_or(self) -> None:
        rules = {
            "logic": "OR",
            "conditions": [_cond("q1", "equals", "x"), None],
        }
        assert should_show_question(rules, {"q1": "x"}) is True

    def test_unhashable_operator(self) -> None:
        rules = _rules({"questionKey": "q1", "operator": ["equals"], "value": "x"})
        assert should_show_question(rules, {"q1": "x"}) is False

    def test_rules_of_unexpected_type(self) -> None:
        assert should_show_question("always", {}) is True


# ---------------------------------------------------------------------------
# Tests: Purity
# ---------------------------------------------------------------------------


class TestPurity:
    """Evaluation has no side effects and is repeatable."""

    def test_inputs_not_mutated(self) -> None:
        rules = _rules(_cond("q1", "contains", "a"), _cond("q2", "notEquals", "b"))
        answers = {"q1": ["a", "c"], "q2": "z"}
        rules_before = copy.deepcopy(rules)
        answers_before = copy.deepcopy(answers)

        should_show_question(rules, answers)

        assert rules == rules_before
        assert answers == answers_before

    def test_idempotent(self) -> None:
        rules = _rules(*YES_NO, logic="OR")
        answers = {"q1": "no", "q2": "no"}
        first = should_show_question(rules, answers)
        second = should_show_question(rules, answers)
        assert first is second is True

    def test_model_and_mapping_agree(self) -> None:
        raw = _rules(*YES_NO, logic="OR")
        model = ConditionalRuleSet.model_validate(raw)
        for answers in (
            {"q1": "yes"},
            {"q2": "no"},
            {"q1": "no", "q2": "maybe"},
            {},
        ):
            assert should_show_question(model, answers) == should_show_question(
                raw, answers
            )
