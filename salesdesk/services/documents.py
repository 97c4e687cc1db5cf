"""Document bindings for offers, reservation forms and contracts, and the timed render call."""
from __future__ import annotations

import logging
import re
from concurrent import futures
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..constants import ADMIN_ROLES, CONTRACT_PERSON, FINANCIAL_ADMIN, LANGUAGES, PROPERTY_CONSULTANT, SALES_MANAGER
from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind
from ..models.models import Deal, ReservationForm
from ..utils.dates import format_display, local_timestamp, parse_optional_date
from ..utils.money import format_amount, to_decimal
from ..utils.pdf_utils import get_renderer
from .deals import deal_requires_override, plan_schedule

logger = logging.getLogger(__name__)

DOCUMENT_ROLES = {
    "pricing_form": frozenset({PROPERTY_CONSULTANT, SALES_MANAGER}) | ADMIN_ROLES,
    "reservation_form": frozenset({FINANCIAL_ADMIN}) | ADMIN_ROLES,
    "contract": frozenset({CONTRACT_PERSON}) | ADMIN_ROLES,
}

TITLES = {
    "pricing_form": {"en": "Client Offer", "ar": "عرض السعر للعميل"},
    "reservation_form": {"en": "Reservation Form", "ar": "استمارة حجز"},
    "contract": {"en": "Sales Contract", "ar": "عقد بيع"},
}

SLOT_LABELS = {
    "payment_plan": {"en": "Payment Plan", "ar": "خطة السداد"},
    "offer_date": {"en": "Offer Date", "ar": "تاريخ العرض"},
    "first_payment": {"en": "First Payment", "ar": "تاريخ أول دفعة"},
    "unit": {"en": "Unit", "ar": "الوحدة"},
    "month": {"en": "Month", "ar": "الشهر"},
    "label": {"en": "Label", "ar": "الوصف"},
    "amount": {"en": "Amount", "ar": "القيمة"},
    "date": {"en": "Date", "ar": "التاريخ"},
    "amount_words": {"en": "Amount in Words", "ar": "المبلغ بالحروف"},
    "down_payment": {"en": "Down Payment", "ar": "دفعة المقدم"},
    "dp_total": {"en": "Total Down Payment", "ar": "إجمالي الدفعة"},
    "dp_preliminary": {"en": "Preliminary payment at reservation", "ar": "الدفعة المبدئية عند الحجز"},
    "dp_paid": {"en": "Amounts paid from Down Payment value", "ar": "مبالغ مدفوعة من قيمة دفعة المقدم"},
    "dp_remaining": {"en": "Remaining from Down Payment value", "ar": "المتبقي من قيمة دفعة المقدم"},
    "total_excl": {"en": "Total excluding maintenance", "ar": "الإجمالي بدون وديعة الصيانة"},
    "total_incl": {"en": "Total including maintenance", "ar": "الإجمالي شامل وديعة الصيانة"},
}

ARABIC_FREQUENCIES = {"monthly": "شهري", "quarterly": "ربع سنوي", "bi-annually": "نصف سنوي", "annually": "سنوي"}
YEAR_LABEL = re.compile(r"year\s+(\d+)\s*\(([^)]+)\)", re.IGNORECASE)


def is_bilingual(value: Any) -> bool:
    return isinstance(value, dict) and set(value) == set(LANGUAGES)


def resolve_bindings(value: Any, language: str) -> Any:
    """Pick the language variant of every bilingual slot, recursively."""
    if is_bilingual(value):
        return value[language]
    if isinstance(value, dict):
        return {key: resolve_bindings(item, language) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_bindings(item, language) for item in value]
    return value


def arabic_label(label: str) -> str:
    text = (label or "").lower()
    if "down payment" in text:
        return "دفعة التعاقد"
    if "equal installment" in text:
        return "قسط متساوي"
    if "handover" in text:
        return "التسليم"
    if "maintenance" in text:
        return "وديعة الصيانة"
    if "garage fee" in text:
        return "مصروفات الجراج"
    if text.startswith("first year"):
        return "السنة الأولى"
    match = YEAR_LABEL.match(label or "")
    if match:
        frequency = match.group(2).strip().lower()
        return f"سنة {match.group(1)} ({ARABIC_FREQUENCIES.get(frequency, 'سنوي')})"
    return label


def dp_statement(dp: Dict[str, Any], language: str, reservation_date: Optional[date] = None) -> str:
    """Sentence stating how much of the contract down payment is settled and what remains."""
    total = to_decimal(dp.get("total") or "0", "total")
    preliminary = to_decimal(dp.get("preliminary_amount") or "0", "preliminaryAmount")
    paid = to_decimal(dp.get("paid_amount") or "0", "paidAmount")
    if dp.get("remaining") is not None:
        remaining = to_decimal(dp["remaining"], "remaining")
    else:
        remaining = max(Decimal("0"), total - preliminary - paid)
    paid_so_far = preliminary + paid
    completed_on = (
        parse_optional_date(dp.get("paid_date"))
        or parse_optional_date(dp.get("preliminary_date"))
        or reservation_date
    )
    completed_text = format_display(completed_on) if completed_on else ""

    if language == "ar":
        if remaining > 0:
            return (
                f"دفعة التعاقد المتفق عليها هي مبلغ {format_amount(total)} جم، "
                f"تم سداد مبلغ {format_amount(paid_so_far)} جم من قيمة دفعة التعاقد حتى تاريخه، "
                f"ويتبقى مبلغ {format_amount(remaining)} جم يسدد عند توقيع العقد."
            )
        suffix = f" بتاريخ {completed_text}." if completed_text else "."
        return f"دفعة التعاقد المتفق عليها هي مبلغ {format_amount(total)} جم، تم سداده بالكامل{suffix}"
    if remaining > 0:
        return (
            f"The agreed down payment is {format_amount(total)} EGP, "
            f"of which {format_amount(paid_so_far)} EGP has been paid so far, "
            f"leaving {format_amount(remaining)} EGP to be paid upon signing the contract."
        )
    suffix = f" on {completed_text}." if completed_text else "."
    return f"The agreed down payment is {format_amount(total)} EGP and it has been fully paid{suffix}"


def _words(ctx, amount: Decimal, language: str, currency: str) -> str:
    return ctx.words.words(amount, language, currency)


def _buyers(client_info: Dict[str, Any]) -> List[Dict[str, Any]]:
    count = min(max(int(client_info.get("number_of_buyers") or 1), 1), 4)
    buyers = []
    for index in range(1, count + 1):
        suffix = "" if index == 1 else f"_{index}"
        buyers.append(
            {
                key: client_info.get(f"{key}{suffix}") or ""
                for key in ("buyer_name", "id_or_passport", "nationality", "address", "phone_primary", "phone_secondary")
            }
        )
    return buyers


def _schedule_rows(ctx, deal: Deal, language: str, currency: str) -> List[Dict[str, Any]]:
    rows = []
    for row in plan_schedule(deal):
        amount = to_decimal(row["amount"], "amount")
        due = parse_optional_date(row.get("dueDate"))
        rows.append(
            {
                "monthOffset": row.get("monthOffset"),
                "label": {"en": row.get("label"), "ar": arabic_label(row.get("label"))},
                "amount": format_amount(amount),
                "date": format_display(due),
                "writtenAmount": _words(ctx, amount, language, currency),
            }
        )
    return rows


def _approved_reservation(ctx, deal: Deal) -> Optional[ReservationForm]:
    forms = ctx.store.find(ReservationForm, deal_id=deal.id, status="approved")
    return forms[-1] if forms else None


def _open_reservation(ctx, deal: Deal) -> Optional[ReservationForm]:
    forms = ctx.store.find(ReservationForm, deal_id=deal.id, status=["draft", "pending_approval", "approved"])
    return forms[-1] if forms else None


def build_bindings(ctx, document_type: str, deal: Deal, language: str) -> Dict[str, Any]:
    """Bilingual binding map keyed by slot; resolve with :func:`resolve_bindings`."""
    details = deal.details or {}
    calculator = details.get("calculator") or {}
    request = calculator.get("request") or {}
    totals = (calculator.get("generatedPlan") or {}).get("totals") or {}
    currency = request.get("currency") or ctx.settings.default_currency
    total_excl = to_decimal(totals.get("nominalExclMaintenance") or "0", "nominalExclMaintenance")
    total_incl = to_decimal(totals.get("nominalInclMaintenance") or "0", "nominalInclMaintenance")

    bindings: Dict[str, Any] = {
        "title": TITLES[document_type],
        "generated_at": local_timestamp(ctx.clock.now(), ctx.settings.timezone),
        "labels": SLOT_LABELS,
        "deal_id": deal.id,
        "payment_plan_id": deal.payment_plan_id,
        "currency": currency,
        "unit": details.get("unitInfo") or {},
        "buyers": _buyers(details.get("clientInfo") or {}),
        "total_excl": format_amount(total_excl),
        "total_excl_words": _words(ctx, total_excl, language, currency),
        "total_incl": format_amount(total_incl),
        "total_incl_words": _words(ctx, total_incl, language, currency),
        "schedule": _schedule_rows(ctx, deal, language, currency),
    }
    if document_type == "pricing_form":
        return bindings

    form = _approved_reservation(ctx, deal) if document_type == "contract" else _open_reservation(ctx, deal)
    dp = ((form.details or {}).get("dp") if form is not None else None) or {}
    dp_total = to_decimal(dp.get("total") or "0", "total")
    preliminary = to_decimal(dp.get("preliminary_amount") or "0", "preliminaryAmount")
    paid = to_decimal(dp.get("paid_amount") or "0", "paidAmount")
    remaining = max(Decimal("0"), dp_total - preliminary - paid)
    bindings["dp"] = {
        "total": format_amount(dp_total),
        "total_words": _words(ctx, dp_total, language, currency),
        "preliminary": format_amount(preliminary),
        "preliminary_words": _words(ctx, preliminary, language, currency),
        "preliminary_date": format_display(parse_optional_date(dp.get("preliminary_date"))),
        "paid": format_amount(paid),
        "paid_words": _words(ctx, paid, language, currency),
        "paid_date": format_display(parse_optional_date(dp.get("paid_date"))),
        "remaining": format_amount(remaining),
        "remaining_words": _words(ctx, remaining, language, currency),
    }
    if form is not None:
        bindings["reservation_date"] = format_display(form.reservation_date)
    if document_type == "contract":
        after_dp = max(Decimal("0"), total_incl - dp_total)
        bindings["dp_statement"] = {
            code: dp_statement(dp, code, form.reservation_date if form is not None else None) for code in LANGUAGES
        }
        bindings["remaining_after_dp"] = format_amount(after_dp)
        bindings["remaining_after_dp_words"] = _words(ctx, after_dp, language, currency)
    return bindings


def _check_document_access(actor: Actor, document_type: str, deal: Deal) -> None:
    roles = DOCUMENT_ROLES.get(document_type)
    if roles is None:
        raise DomainError(ErrorKind.VALIDATION, f"Unknown document type {document_type!r}", {"field": "documentType"})
    if actor.role not in roles:
        raise DomainError(
            ErrorKind.FORBIDDEN_ROLE,
            f"Role {actor.role} cannot generate {document_type}",
            {"role": actor.role, "documentType": document_type},
        )
    if document_type == "pricing_form":
        return
    if deal.status != "approved":
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            "Deal must be approved before generating this document",
            {"dealId": deal.id, "status": deal.status},
        )
    if deal_requires_override(deal):
        raise DomainError(
            ErrorKind.INVALID_TRANSITION,
            "Top-management override required before generating this document",
            {"dealId": deal.id, "overrideStatus": deal.override_status},
        )


def render_with_timeout(renderer, template_key: str, bindings: dict, timeout: float) -> bytes:
    executor = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="render")
    future = executor.submit(renderer.render, template_key, bindings)
    try:
        return future.result(timeout=timeout)
    except futures.TimeoutError as exc:
        future.cancel()
        logger.warning("Rendering %s exceeded %.1fs", template_key, timeout)
        raise DomainError(
            ErrorKind.RENDER_TIMEOUT,
            f"Rendering {template_key} timed out",
            {"timeoutSeconds": timeout},
        ) from exc
    finally:
        executor.shutdown(wait=False)


def render_document(ctx, actor: Actor, document_type: str, deal_id: int, language: str = "en") -> bytes:
    language = "ar" if str(language or "en").lower().startswith("ar") else "en"
    deal = ctx.store.get(Deal, deal_id)
    _check_document_access(actor, document_type, deal)
    bindings = resolve_bindings(build_bindings(ctx, document_type, deal, language), language)
    renderer = ctx.renderer or get_renderer()
    content = render_with_timeout(renderer, document_type, bindings, ctx.settings.render_timeout_seconds)
    logger.info("Rendered %s for deal %s (%s bytes)", document_type, deal.id, len(content))
    return content
