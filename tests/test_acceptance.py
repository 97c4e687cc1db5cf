from datetime import date
from decimal import Decimal

import pytest

from salesdesk.services.acceptance import (
    ACCEPT,
    FAIL,
    PASS,
    REJECT,
    AcceptanceThresholds,
    anchored_cash,
    percent_of_total,
)
from salesdesk.services.calculation import CalculationRequest, calculate
from salesdesk.services.plan_builder import CustomPlanInputs, FirstYearPayment, PlanMode, SubsequentYear
from salesdesk.services.standard_plan import StandardPlan
from salesdesk.utils.money import Money

ZERO_RATE_PLAN = StandardPlan(Decimal("1000000"), Decimal("0"), 6, "quarterly")


def _evaluate(thresholds, inputs=None):
    request = CalculationRequest(
        mode=PlanMode.EVALUATE_CUSTOM_PRICE,
        inputs=inputs or CustomPlanInputs(dp_value=Decimal("20")),
        std_plan=ZERO_RATE_PLAN,
    )
    return calculate(request, thresholds=thresholds, today=date(2025, 1, 15)).evaluation


def _conditions(evaluation):
    return {condition.key: condition for condition in evaluation.conditions}


def test_thresholds_from_mapping_treats_blank_as_unbounded():
    thresholds = AcceptanceThresholds.from_mapping({"dpPercentMin": "10", "dpPercentMax": "", "handover_percent_max": 40})
    assert thresholds.dp_percent_min == Decimal("10")
    assert thresholds.dp_percent_max is None
    assert thresholds.handover_percent_max == Decimal("40")
    assert thresholds.to_dict()["dpPercentMin"] == "10"
    assert thresholds.to_dict()["firstYearPercentMin"] is None


def test_no_bounds_means_every_condition_passes():
    evaluation = _evaluate(AcceptanceThresholds())
    assert evaluation.decision == ACCEPT
    assert all(condition.status == PASS for condition in evaluation.conditions)
    assert evaluation.needs_override is False


def test_down_payment_below_minimum_rejects():
    evaluation = _evaluate(AcceptanceThresholds.from_mapping({"dpPercentMin": "25"}))
    conditions = _conditions(evaluation)
    assert conditions["dp_percent"].status == FAIL
    assert conditions["dp_percent"].actual_percent == Decimal("20.00")
    assert evaluation.pv.passed is True
    assert evaluation.decision == REJECT
    assert evaluation.needs_override is True


def test_first_year_counts_down_payment_and_split_payments():
    inputs = CustomPlanInputs(
        dp_value=Decimal("10"),
        split_first_year=True,
        first_year_payments=(FirstYearPayment(Decimal("50000"), 6), FirstYearPayment(Decimal("50000"), 12)),
    )
    evaluation = _evaluate(AcceptanceThresholds.from_mapping({"firstYearPercentMin": "20"}), inputs)
    first_year = _conditions(evaluation)["first_year_percent"]
    assert first_year.actual_amount == Decimal("200000.00")
    assert first_year.status == PASS


def test_unsplit_first_block_counts_as_second_year():
    inputs = CustomPlanInputs(
        dp_value=Decimal("20"),
        subsequent_years=(SubsequentYear(Decimal("150000"), "quarterly"),),
    )
    thresholds = AcceptanceThresholds.from_mapping({"firstYearPercentMax": "20", "secondYearPercentMin": "15"})
    conditions = _conditions(_evaluate(thresholds, inputs))

    assert conditions["first_year_percent"].actual_amount == Decimal("200000.00")
    assert conditions["second_year_percent"].actual_amount == Decimal("150000.00")
    assert conditions["first_year_percent"].status == PASS
    assert conditions["second_year_percent"].status == PASS


@pytest.mark.parametrize(
    "bounds",
    [
        {},
        {"dpPercentMin": "20", "dpPercentMax": "20"},
        {"handoverPercentMin": "5"},
        {"secondYearPercentMax": "0"},
        {"firstYearPercentMax": "15"},
    ],
)
def test_accept_exactly_when_pv_and_all_conditions_pass(bounds):
    evaluation = _evaluate(AcceptanceThresholds.from_mapping(bounds))
    all_pass = evaluation.pv.passed and all(condition.passed for condition in evaluation.conditions)
    assert (evaluation.decision == ACCEPT) is all_pass


def test_discount_fails_the_pv_check():
    evaluation = _evaluate(AcceptanceThresholds(), CustomPlanInputs(sales_discount_percent=Decimal("2")))
    assert evaluation.pv.passed is False
    assert evaluation.pv.difference == Decimal("-20000.00")
    assert evaluation.decision == REJECT


def test_percent_of_zero_total_is_zero():
    assert percent_of_total(Money.of("5"), Money.zero()) == Decimal("0.00")


def test_anchored_cash_of_empty_schedule():
    cash = anchored_cash([], "EGP")
    assert all(amount.is_zero() for amount in cash.values())
