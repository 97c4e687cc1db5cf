import logging
import threading
from datetime import date

import pytest

from salesdesk.constants import (
    CEO,
    CONTRACT_PERSON,
    FINANCIAL_ADMIN,
    FINANCIAL_MANAGER,
    PROPERTY_CONSULTANT,
)
from salesdesk.core.errors import DomainError, ErrorKind
from salesdesk.core.ports import DocRenderer
from salesdesk.services import reservations as reservation_service
from salesdesk.services import unit_blocks as block_service
from salesdesk.services.context import build_context
from salesdesk.services.documents import (
    arabic_label,
    build_bindings,
    dp_statement,
    render_document,
    resolve_bindings,
)
from salesdesk.utils.pdf_utils import DEFAULT_FONT, PdfScheduleRenderer, register_document_font, shutdown_renderer


class CapturingRenderer(DocRenderer):
    def __init__(self):
        self.calls = []

    def render(self, template_key, bindings):
        self.calls.append((template_key, bindings))
        return b"%PDF-captured"


class SlowRenderer(DocRenderer):
    def __init__(self):
        self.release = threading.Event()

    def render(self, template_key, bindings):
        self.release.wait(5)
        return b"%PDF-late"


@pytest.fixture
def reserved_deal(ctx, actors, approved_deal):
    deal = approved_deal()
    block = block_service.request_block(ctx, actors[PROPERTY_CONSULTANT], deal.unit_id, deal.id)
    block_service.approve_block(ctx, actors[FINANCIAL_MANAGER], block.id)
    form = reservation_service.create_reservation(
        ctx,
        actors[FINANCIAL_ADMIN],
        deal.id,
        reservation_date=date(2025, 1, 20),
        preliminary_payment="50000",
    )
    reservation_service.record_dp_payment(ctx, actors[FINANCIAL_ADMIN], form.id, paid_amount="100000")
    reservation_service.apply_reservation_event(ctx, actors[FINANCIAL_ADMIN], form.id, "submit")
    reservation_service.apply_reservation_event(ctx, actors[FINANCIAL_MANAGER], form.id, "approve")
    return deal


def test_pricing_form_renders_a_pdf(ctx, actors, create_deal):
    deal = create_deal()
    try:
        content = render_document(ctx, actors[PROPERTY_CONSULTANT], "pricing_form", deal.id, "en")
    finally:
        shutdown_renderer()
    assert content.startswith(b"%PDF")


def test_contract_bindings_carry_dp_statement(ctx, actors, reserved_deal):
    renderer = CapturingRenderer()
    capture_ctx = build_context(ctx.store.session, clock=ctx.clock, renderer=renderer)

    content = render_document(capture_ctx, actors[CONTRACT_PERSON], "contract", reserved_deal.id, "ar")

    assert content == b"%PDF-captured"
    template_key, bindings = renderer.calls[0]
    assert template_key == "contract"
    assert bindings["title"] == "عقد بيع"
    assert "ويتبقى مبلغ 50,000.00 جم" in bindings["dp_statement"]
    assert bindings["dp"]["total"] == "200,000.00"
    assert bindings["dp"]["remaining"] == "50,000.00"
    assert bindings["reservation_date"] == "20/01/2025"
    assert bindings["remaining_after_dp"] == "800,000.00"
    assert bindings["buyers"][0]["buyer_name"] == "Mona Adel"
    assert bindings["schedule"][0]["label"] == "دفعة التعاقد"
    assert bindings["schedule"][0]["writtenAmount"].endswith("جنيه مصري")


def test_contract_bindings_keep_both_languages_until_resolved(ctx, reserved_deal):
    bindings = build_bindings(ctx, "contract", reserved_deal, "en")

    assert set(bindings["dp_statement"]) == {"en", "ar"}
    assert bindings["dp_statement"]["en"].startswith("The agreed down payment is 200,000.00 EGP")
    assert "leaving 50,000.00 EGP" in bindings["dp_statement"]["en"]
    resolved = resolve_bindings(bindings, "en")
    assert resolved["title"] == "Sales Contract"
    assert resolved["schedule"][0]["label"] == "Down Payment"


def test_dp_statement_when_fully_paid():
    dp = {"total": "100000", "preliminary_amount": "40000", "paid_amount": "60000", "paid_date": "2025-02-01"}
    assert dp_statement(dp, "en") == "The agreed down payment is 100,000.00 EGP and it has been fully paid on 01/02/2025."
    assert dp_statement(dp, "ar").endswith("تم سداده بالكامل بتاريخ 01/02/2025.")


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        ("Down Payment", "دفعة التعاقد"),
        ("Equal Installment", "قسط متساوي"),
        ("Handover", "التسليم"),
        ("Year 2 (quarterly)", "سنة 2 (ربع سنوي)"),
        ("Something else", "Something else"),
    ],
)
def test_arabic_schedule_labels(label, expected):
    assert arabic_label(label) == expected


def test_render_timeout(ctx, actors, create_deal):
    deal = create_deal()
    renderer = SlowRenderer()
    slow_ctx = build_context(
        ctx.store.session,
        clock=ctx.clock,
        renderer=renderer,
        settings=ctx.settings.model_copy(update={"render_timeout_seconds": 0.05}),
    )
    try:
        with pytest.raises(DomainError) as excinfo:
            render_document(slow_ctx, actors[PROPERTY_CONSULTANT], "pricing_form", deal.id)
    finally:
        renderer.release.set()
    assert excinfo.value.kind is ErrorKind.RENDER_TIMEOUT


def test_document_roles(ctx, actors, create_deal):
    deal = create_deal()
    capture_ctx = build_context(ctx.store.session, clock=ctx.clock, renderer=CapturingRenderer())

    with pytest.raises(DomainError) as excinfo:
        render_document(capture_ctx, actors[FINANCIAL_ADMIN], "pricing_form", deal.id)
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE

    with pytest.raises(DomainError) as excinfo:
        render_document(capture_ctx, actors[CEO], "contract", deal.id)
    assert excinfo.value.kind is ErrorKind.FORBIDDEN_ROLE

    with pytest.raises(DomainError) as excinfo:
        render_document(capture_ctx, actors[PROPERTY_CONSULTANT], "brochure", deal.id)
    assert excinfo.value.kind is ErrorKind.VALIDATION


def test_reservation_form_needs_approved_deal(ctx, actors, create_deal):
    deal = create_deal()
    capture_ctx = build_context(ctx.store.session, clock=ctx.clock, renderer=CapturingRenderer())
    with pytest.raises(DomainError) as excinfo:
        render_document(capture_ctx, actors[FINANCIAL_ADMIN], "reservation_form", deal.id)
    assert excinfo.value.kind is ErrorKind.INVALID_TRANSITION


def test_arabic_without_document_font_still_renders_and_warns(caplog):
    renderer = PdfScheduleRenderer()
    assert renderer.font_name == DEFAULT_FONT
    assert register_document_font(None) == DEFAULT_FONT

    with caplog.at_level(logging.WARNING, logger="salesdesk.utils.pdf_utils"):
        content = renderer.render("contract", {"title": "عقد بيع", "schedule": []})

    assert content.startswith(b"%PDF")
    assert "pdf_font_path" in caplog.text


def test_english_document_renders_without_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="salesdesk.utils.pdf_utils"):
        content = PdfScheduleRenderer().render("pricing_form", {"title": "Client Offer", "schedule": []})
    assert content.startswith(b"%PDF")
    assert caplog.text == ""
