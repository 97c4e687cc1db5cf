from decimal import Decimal

import pytest

from salesdesk.constants import (
    CEO,
    FINANCIAL_MANAGER,
    PROPERTY_CONSULTANT,
    SALES_MANAGER,
)
from salesdesk.core.actors import Actor
from salesdesk.core.errors import DomainError, ErrorKind
from salesdesk.models.models import Deal
from salesdesk.services import deals as deal_service
from salesdesk.services.audit import DEAL
from salesdesk.services.calculation import CalculationRequest
from salesdesk.services.plan_builder import CustomPlanInputs, PlanMode


def _actions(ctx, deal_id):
    return [row.action for row in ctx.store.history(DEAL, deal_id)]


def test_create_deal_snapshots_plan_buyers_and_unit(ctx, create_deal):
    deal = create_deal()

    assert deal.status == "draft"
    assert deal.decision == "ACCEPT"
    assert deal.needs_override is False
    assert deal.amount == Decimal("1000000.00")
    details = deal.details
    assert details["version"] == 1
    assert details["clientInfo"]["buyer_name"] == "Mona Adel"
    assert details["clientInfo"]["number_of_buyers"] == 1
    assert details["unitInfo"]["unit_code"] == "U-0001"
    schedule = details["calculator"]["generatedPlan"]["schedule"]
    assert schedule[0]["kindTag"] == "dp"
    assert schedule[0]["writtenAmount"] == "Two hundred thousand Egyptian pounds"
    assert details["calculator"]["request"]["unitId"] == deal.unit_id
    assert _actions(ctx, deal.id) == ["created"]


def test_create_deal_rejects_more_than_four_buyers(ctx, actors, create_unit):
    unit = create_unit()
    request = CalculationRequest(mode=PlanMode.EVALUATE_CUSTOM_PRICE, unit_id=unit.id)
    with pytest.raises(DomainError) as excinfo:
        deal_service.create_deal(
            ctx,
            actors[PROPERTY_CONSULTANT],
            request,
            buyers=[{"buyer_name": f"Buyer {index}"} for index in range(5)],
        )
    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert ctx.store.find(Deal) == []


def test_multiple_buyers_get_suffixed_keys():
    info = deal_service.normalize_client_info([{"buyer_name": "A"}, {"buyer_name": "B", "email": "b@example.com"}])
    assert info["number_of_buyers"] == 2
    assert info["buyer_name"] == "A"
    assert info["buyer_name_2"] == "B"
    assert info["email_2"] == "b@example.com"


def test_submit_and_sales_manager_approval(ctx, actors, create_deal, clock):
    deal = create_deal()
    clock.advance(minutes=5)
    deal = deal_service.apply_deal_event(ctx, deal.id, "submit", actors[PROPERTY_CONSULTANT])
    assert deal.status == "pending_approval"

    clock.advance(minutes=5)
    deal = deal_service.apply_deal_event(ctx, deal.id, "approve_sm", actors[SALES_MANAGER])
    assert deal.status == "approved"
    assert deal.manager_review_by == actors[SALES_MANAGER].id
    assert _actions(ctx, deal.id) == ["created", "submit", "approve_sm"]


def test_consultant_cannot_approve(ctx, actors, create_deal):
    deal = create_deal()
    deal_service.apply_deal_event(ctx, deal.id, "submit", actors[PROPERTY_CONSULTANT])
    with pytest.raises(DomainError) as excinfo:
        deal_service.apply_deal_event(ctx, deal.id, "approve_sm", actors[PROPERTY_CONSULTANT])
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE


def test_other_consultant_cannot_submit(ctx, actors, create_deal):
    deal = create_deal()
    stranger = Actor(id=999, role=PROPERTY_CONSULTANT)
    with pytest.raises(DomainError) as excinfo:
        deal_service.apply_deal_event(ctx, deal.id, "submit", stranger)
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE


def test_rejected_plan_cannot_be_approved_without_override(ctx, actors, create_deal):
    deal = create_deal(discount="2")
    assert deal.decision == "REJECT"
    assert deal.needs_override is True
    deal_service.apply_deal_event(ctx, deal.id, "submit", actors[PROPERTY_CONSULTANT])

    before = _actions(ctx, deal.id)
    with pytest.raises(DomainError) as excinfo:
        deal_service.apply_deal_event(ctx, deal.id, "approve_sm", actors[SALES_MANAGER])
    assert excinfo.value.kind is ErrorKind.INVALID_TRANSITION
    assert _actions(ctx, deal.id) == before
    assert ctx.store.get(Deal, deal.id).status == "pending_approval"


def test_override_chain_approves_the_deal(ctx, actors, create_deal, clock):
    deal = create_deal(discount="2")

    steps = [
        lambda: deal_service.apply_deal_event(ctx, deal.id, "request_override", actors[PROPERTY_CONSULTANT]),
        lambda: deal_service.approve_override(ctx, deal.id, actors[SALES_MANAGER]),
        lambda: deal_service.approve_override(ctx, deal.id, actors[FINANCIAL_MANAGER]),
        lambda: deal_service.approve_override(ctx, deal.id, actors[CEO]),
    ]
    statuses = []
    for step in steps:
        clock.advance(minutes=10)
        statuses.append(step().override_status)

    deal = ctx.store.get(Deal, deal.id)
    assert statuses == ["requested", "sm_approved", "fm_approved", "tm_approved"]
    assert deal.status == "approved"
    assert deal.override_requested_at is not None
    assert deal.manager_review_at is not None
    assert deal.fm_review_at is not None
    assert deal.override_approved_at is not None
    assert deal.override_requested_at < deal.manager_review_at < deal.fm_review_at < deal.override_approved_at
    assert deal_service.deal_requires_override(deal) is False

    history = ctx.store.history(DEAL, deal.id)
    assert [row.action for row in history] == [
        "created",
        "request_override",
        "override_sm_approve",
        "override_fm_approve",
        "override_tm_approve",
    ]
    stamps = [row.at for row in history]
    assert stamps == sorted(stamps)


def test_override_steps_must_follow_the_chain(ctx, actors, create_deal):
    deal = create_deal(discount="2")
    deal_service.apply_deal_event(ctx, deal.id, "request_override", actors[PROPERTY_CONSULTANT])
    with pytest.raises(DomainError) as excinfo:
        deal_service.approve_override(ctx, deal.id, actors[FINANCIAL_MANAGER])
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE


def test_override_rejection_records_reason(ctx, actors, create_deal):
    deal = create_deal(discount="2")
    deal_service.apply_deal_event(ctx, deal.id, "request_override", actors[PROPERTY_CONSULTANT])
    deal = deal_service.reject_override(ctx, deal.id, actors[SALES_MANAGER], {"reason": "Discount too deep"})
    assert deal.override_status == "rejected"
    assert deal.rejection_reason == "Discount too deep"
    with pytest.raises(DomainError) as excinfo:
        deal_service.approve_override(ctx, deal.id, actors[SALES_MANAGER])
    assert excinfo.value.kind is ErrorKind.INVALID_TRANSITION


def test_override_not_available_for_accepted_plan(ctx, actors, create_deal):
    deal = create_deal()
    with pytest.raises(DomainError) as excinfo:
        deal_service.apply_deal_event(ctx, deal.id, "request_override", actors[PROPERTY_CONSULTANT])
    assert excinfo.value.kind is ErrorKind.INVALID_TRANSITION


def test_request_edits_round_trip(ctx, actors, create_deal):
    deal = create_deal()
    deal_service.apply_deal_event(ctx, deal.id, "submit", actors[PROPERTY_CONSULTANT])
    deal = deal_service.apply_deal_event(ctx, deal.id, "request_edits", actors[SALES_MANAGER], {"reason": "Fix DP"})
    assert deal.status == "draft"
    assert deal.edits_requested is True

    request = CalculationRequest(
        mode=PlanMode.EVALUATE_CUSTOM_PRICE,
        inputs=CustomPlanInputs(dp_value=Decimal("25")),
        unit_id=deal.unit_id,
    )
    previous_plan = deal.payment_plan_id
    deal = deal_service.update_snapshot(ctx, actors[PROPERTY_CONSULTANT], deal.id, request)
    assert deal.payment_plan_id != previous_plan
    assert deal.details["calculator"]["generatedPlan"]["schedule"][0]["amount"] == "250000.00"

    deal = deal_service.apply_deal_event(ctx, deal.id, "edits_addressed", actors[PROPERTY_CONSULTANT])
    assert deal.status == "pending_approval"
    assert deal.edits_requested is False


def test_snapshot_only_changes_while_draft(ctx, actors, approved_deal):
    deal = approved_deal()
    request = CalculationRequest(mode=PlanMode.EVALUATE_CUSTOM_PRICE, unit_id=deal.unit_id)
    with pytest.raises(DomainError) as excinfo:
        deal_service.update_snapshot(ctx, actors[PROPERTY_CONSULTANT], deal.id, request)
    assert excinfo.value.kind is ErrorKind.INVALID_TRANSITION


def test_cancel_and_unknown_event(ctx, actors, create_deal):
    deal = create_deal()
    with pytest.raises(DomainError) as excinfo:
        deal_service.apply_deal_event(ctx, deal.id, "teleport", actors[PROPERTY_CONSULTANT])
    assert excinfo.value.kind is ErrorKind.INVALID_TRANSITION

    deal = deal_service.apply_deal_event(ctx, deal.id, "cancel", actors[PROPERTY_CONSULTANT])
    assert deal.status == "cancelled"
    with pytest.raises(DomainError):
        deal_service.apply_deal_event(ctx, deal.id, "submit", actors[PROPERTY_CONSULTANT])


def test_consultant_discount_authority_applies_to_deals(ctx, actors, create_unit):
    unit = create_unit()
    request = CalculationRequest(
        mode=PlanMode.EVALUATE_CUSTOM_PRICE,
        inputs=CustomPlanInputs(sales_discount_percent=Decimal("3")),
        unit_id=unit.id,
    )
    with pytest.raises(DomainError) as excinfo:
        deal_service.create_deal(ctx, actors[PROPERTY_CONSULTANT], request)
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE
