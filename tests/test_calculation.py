from datetime import date
from decimal import Decimal

import pytest

from salesdesk.constants import CEO, FINANCIAL_MANAGER, PROPERTY_CONSULTANT
from salesdesk.core.errors import DomainError, ErrorKind
from salesdesk.services.acceptance import ACCEPT, REJECT, AcceptanceThresholds
from salesdesk.services.calculation import CalculationRequest, calculate, request_to_dict
from salesdesk.services.plan_builder import (
    EXTRA_KINDS,
    KIND_DP,
    KIND_MAINTENANCE,
    KIND_SUBSEQUENT_YEAR,
    CustomPlanInputs,
    FirstYearPayment,
    PlanMode,
    SubsequentYear,
)
from salesdesk.services.standard_plan import StandardPlan
from salesdesk.utils.words import default_words

TODAY = date(2025, 1, 15)
NO_LIMITS = AcceptanceThresholds()


def _plan(list_price="1000000", rate="12", years=6, frequency="quarterly", computed_pv=None):
    return StandardPlan(
        list_price=Decimal(list_price),
        annual_rate_percent=Decimal(rate),
        duration_years=years,
        frequency=frequency,
        computed_pv=None if computed_pv is None else Decimal(computed_pv),
    )


def _run(mode, inputs=None, plan=None, thresholds=NO_LIMITS, **kwargs):
    request = CalculationRequest(mode=mode, inputs=inputs or CustomPlanInputs(), std_plan=plan or _plan())
    return calculate(request, thresholds=thresholds, today=TODAY, **kwargs)


def _target_pv_inputs(**overrides):
    values = dict(dp_type="amount", dp_value=Decimal("100000"), duration_years=5, frequency="monthly", handover_year=2)
    values.update(overrides)
    return CustomPlanInputs(**values)


def test_standard_mode_baseline_is_accepted():
    result = _run(PlanMode.STANDARD)

    down_payment = result.schedule[0]
    installments = [entry for entry in result.schedule if entry.kind != KIND_DP]
    assert down_payment.kind == KIND_DP
    assert down_payment.amount.amount == Decimal("200000.00")
    assert len(installments) == 24
    assert result.nominal_excl_maintenance.amount == Decimal("1000000.00")
    assert abs(result.computed_pv - result.evaluation.pv.standard_pv) <= Decimal("0.01")
    assert result.evaluation.decision == ACCEPT
    assert result.evaluation.needs_override is False
    assert result.meta["standardPvSource"] == "policy_schedule"


def test_standard_mode_discount_requires_override():
    result = _run(PlanMode.STANDARD, CustomPlanInputs(sales_discount_percent=Decimal("1.5")))

    assert result.nominal_excl_maintenance.amount == Decimal("985000.00")
    assert result.evaluation.decision == REJECT
    assert result.evaluation.needs_override is True
    failed = result.evaluation.to_dict()["summary"]["failedConditions"]
    assert "standard_policy_discount" in failed


def test_target_pv_solve_lands_on_the_standard_pv():
    plan = _plan(rate="12", years=5, frequency="monthly", computed_pv="850000")
    result = _run(PlanMode.CALCULATE_FOR_TARGET_PV, _target_pv_inputs(), plan)

    assert result.nominal_excl_maintenance.amount > Decimal("850000")
    assert abs(result.computed_pv - Decimal("850000")) <= Decimal("0.01")
    assert result.schedule[0].amount.amount == Decimal("100000.00")
    assert result.meta["standardPvSource"] == "client_computed"
    assert Decimal(result.meta["scaleFactor"]) > 1
    assert result.evaluation.pv.passed is True


def test_yearly_then_equal_keeps_blocks_and_scales_the_remainder():
    plan = _plan(rate="12", years=5, frequency="monthly", computed_pv="850000")
    inputs = _target_pv_inputs(subsequent_years=(SubsequentYear(Decimal("100000"), "quarterly"),))
    result = _run(PlanMode.YEARLY_THEN_EQUAL_TARGET_PV, inputs, plan)

    blocks = [entry for entry in result.schedule if entry.kind == KIND_SUBSEQUENT_YEAR]
    assert [entry.month_offset for entry in blocks] == [15, 18, 21, 24]
    assert all(entry.amount.amount == Decimal("25000.00") for entry in blocks)
    assert abs(result.computed_pv - Decimal("850000")) <= Decimal("0.01")
    assert result.meta["effectiveStartYears"] == [2]
    equal = [entry.month_offset for entry in result.schedule if entry.kind == "equal"]
    assert min(equal) == 25


def test_split_first_year_exceeding_price_is_infeasible():
    inputs = CustomPlanInputs(
        split_first_year=True,
        first_year_payments=(
            FirstYearPayment(Decimal("550000"), 3),
            FirstYearPayment(Decimal("550000"), 6),
        ),
    )
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs)
    assert excinfo.value.kind is ErrorKind.INFEASIBLE_PLAN
    assert excinfo.value.details["residual"] == "-100000.00"


def test_anchors_above_standard_pv_are_unreachable():
    plan = _plan(rate="12", years=5, frequency="monthly", computed_pv="850000")
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.CALCULATE_FOR_TARGET_PV, _target_pv_inputs(dp_value=Decimal("900000")), plan)
    assert excinfo.value.kind is ErrorKind.PV_UNREACHABLE


def test_target_pv_modes_require_a_fixed_down_payment():
    plan = _plan(rate="12", years=5, frequency="monthly", computed_pv="850000")
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.CALCULATE_FOR_TARGET_PV, _target_pv_inputs(dp_type="percentage", dp_value=Decimal("10")), plan)
    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert "dpType" in [error["field"] for error in excinfo.value.details["errors"]]


def test_nominal_total_and_pv_match_the_schedule():
    inputs = CustomPlanInputs(
        dp_value=Decimal("15"),
        frequency="monthly",
        additional_handover_payment=Decimal("150000"),
        maintenance_amount=Decimal("80000"),
        garage_amount=Decimal("40000"),
        garage_month=48,
    )
    result = _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs, _plan(rate="25"))

    priced = [entry for entry in result.schedule if entry.kind not in EXTRA_KINDS]
    assert abs(sum(entry.amount.amount for entry in priced) - result.nominal_excl_maintenance.amount) <= Decimal("0.01")
    assert result.nominal_incl_maintenance.amount - result.nominal_excl_maintenance.amount == Decimal("120000.00")
    recomputed = sum(float(entry.amount.amount) / 1.25 ** (entry.month_offset / 12) for entry in priced)
    assert abs(recomputed - float(result.computed_pv)) <= 0.01


def test_schedule_is_ordered_and_numbered():
    inputs = CustomPlanInputs(dp_value=Decimal("10"), maintenance_amount=Decimal("50000"))
    result = _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs)

    months = [entry.month_offset for entry in result.schedule]
    assert months == sorted(months)
    assert [entry.sequence_index for entry in result.schedule] == list(range(1, len(result.schedule) + 1))
    assert result.schedule[0].due_date == TODAY


def test_maintenance_defaults_to_handover_month():
    inputs = CustomPlanInputs(maintenance_amount=Decimal("50000"), handover_year=3)
    result = _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs)

    maintenance = [entry for entry in result.schedule if entry.kind == KIND_MAINTENANCE]
    assert len(maintenance) == 1
    assert maintenance[0].month_offset == 36
    assert result.meta["handoverMonth"] == 36


def test_maintenance_calendar_date_wins_over_month():
    inputs = CustomPlanInputs(
        maintenance_amount=Decimal("50000"),
        maintenance_month=30,
        maintenance_date=date(2026, 1, 15),
    )
    result = _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs)
    maintenance = [entry for entry in result.schedule if entry.kind == KIND_MAINTENANCE][0]
    assert maintenance.month_offset == 12
    assert maintenance.due_date == date(2026, 1, 15)


def test_maintenance_date_before_base_date_is_rejected():
    inputs = CustomPlanInputs(maintenance_amount=Decimal("50000"), maintenance_date=date(2024, 12, 1))
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs)
    assert excinfo.value.kind is ErrorKind.VALIDATION


@pytest.mark.parametrize(
    ("inputs", "field"),
    [
        (CustomPlanInputs(duration_years=13), "planDurationYears"),
        (CustomPlanInputs(sales_discount_percent=Decimal("101")), "salesDiscountPercent"),
        (CustomPlanInputs(dp_value=Decimal("120")), "downPaymentValue"),
        (CustomPlanInputs(handover_year=7), "handoverYear"),
        (
            CustomPlanInputs(split_first_year=True, first_year_payments=(FirstYearPayment(Decimal("1000"), 13),)),
            "firstYearPayments[0].month",
        ),
    ],
)
def test_invalid_custom_inputs(inputs, field):
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs)
    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert field in [error["field"] for error in excinfo.value.details["errors"]]


def test_missing_standard_plan_and_unit_is_rejected():
    request = CalculationRequest(mode=PlanMode.EVALUATE_CUSTOM_PRICE)
    with pytest.raises(DomainError) as excinfo:
        calculate(request, thresholds=NO_LIMITS, today=TODAY)
    assert excinfo.value.kind is ErrorKind.VALIDATION


def test_server_locked_plan_ignores_client_standard_pv():
    request = CalculationRequest(
        mode=PlanMode.EVALUATE_CUSTOM_PRICE,
        std_plan=_plan(rate="0", computed_pv="1"),
        unit_id=7,
    )
    result = calculate(request, thresholds=NO_LIMITS, today=TODAY, unit_plan=_plan(rate="0"))
    assert result.meta["serverLocked"] is True
    assert result.meta["standardPvSource"] == "unit_pricing"
    assert result.evaluation.pv.standard_pv == Decimal("1000000.00")
    assert result.meta["computedPVEqualsTotalNominal"] is True


@pytest.mark.parametrize(
    ("role", "discount", "allowed"),
    [
        (PROPERTY_CONSULTANT, "2", True),
        (PROPERTY_CONSULTANT, "2.5", False),
        (FINANCIAL_MANAGER, "5", True),
        (FINANCIAL_MANAGER, "6", False),
        (CEO, "10", True),
    ],
)
def test_discount_authority_by_role(role, discount, allowed):
    inputs = CustomPlanInputs(sales_discount_percent=Decimal(discount))
    if allowed:
        _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs, actor_role=role)
        return
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.EVALUATE_CUSTOM_PRICE, inputs, actor_role=role)
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE


def test_npv_warning_below_seventy_percent_of_list_price():
    deep = _run(PlanMode.EVALUATE_CUSTOM_PRICE, CustomPlanInputs(sales_discount_percent=Decimal("40")), _plan(rate="0"))
    light = _run(PlanMode.EVALUATE_CUSTOM_PRICE, CustomPlanInputs(sales_discount_percent=Decimal("10")), _plan(rate="0"))
    assert deep.meta["npvWarning"] is True
    assert light.meta["npvWarning"] is False


def test_generated_plan_carries_dates_and_words():
    inputs = CustomPlanInputs(dp_value=Decimal("20"))
    request = CalculationRequest(mode=PlanMode.EVALUATE_CUSTOM_PRICE, inputs=inputs, std_plan=_plan(rate="0"))
    result = calculate(request, thresholds=NO_LIMITS, today=TODAY, words=default_words, generate=True)

    first = result.to_dict(generate=True)["schedule"][0]
    assert first["kindTag"] == "dp"
    assert first["date"] == "15/01/2025"
    assert first["writtenAmount"] == "Two hundred thousand Egyptian pounds"


def test_same_request_gives_identical_results():
    inputs = CustomPlanInputs(dp_value=Decimal("10"), maintenance_amount=Decimal("50000"))
    request = CalculationRequest(mode=PlanMode.EVALUATE_CUSTOM_PRICE, inputs=inputs, std_plan=_plan(rate="25"))
    first = calculate(request, thresholds=NO_LIMITS, today=TODAY).to_dict()
    second = calculate(request, thresholds=NO_LIMITS, today=TODAY).to_dict()
    assert first == second
    assert request_to_dict(request)["inputs"]["dp_value"] == "10"


@pytest.mark.parametrize("value", ["standardMode", "STANDARD", "customYearlyThenEqual_targetPV"])
def test_plan_mode_parse(value):
    assert PlanMode.parse(value) in PlanMode


def test_unknown_mode_is_rejected():
    with pytest.raises(DomainError) as excinfo:
        PlanMode.parse("magic")
    assert excinfo.value.kind is ErrorKind.VALIDATION


def test_client_pv_above_list_price_is_rejected():
    with pytest.raises(DomainError) as excinfo:
        _run(PlanMode.CALCULATE_FOR_TARGET_PV, _target_pv_inputs(), _plan(computed_pv="5000000"))
    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert [error["field"] for error in excinfo.value.details["errors"]] == ["computedPV"]
