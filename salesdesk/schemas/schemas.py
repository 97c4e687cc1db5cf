from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..services.calculation import CalculationRequest
from ..services.plan_builder import CustomPlanInputs, FirstYearPayment, PlanMode, SubsequentYear
from ..services.standard_plan import StandardPlan


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrmModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StandardPlanIn(CamelModel):
    list_price: Decimal = Field(validation_alias=AliasChoices("listPrice", "totalPrice", "list_price"))
    annual_rate_percent: Decimal = Field(
        validation_alias=AliasChoices("annualRatePercent", "financialDiscountRate", "annual_rate_percent")
    )
    duration_years: int = Field(validation_alias=AliasChoices("durationYears", "duration_years"))
    frequency: str
    computed_pv: Optional[Decimal] = Field(
        default=None, validation_alias=AliasChoices("computedPV", "calculatedPV", "computed_pv")
    )

    def to_plan(self) -> StandardPlan:
        return StandardPlan(
            list_price=self.list_price,
            annual_rate_percent=self.annual_rate_percent,
            duration_years=self.duration_years,
            frequency=self.frequency,
            computed_pv=self.computed_pv,
        )


class FirstYearPaymentIn(CamelModel):
    amount: Decimal
    month: int
    kind: Literal["dp", "regular"] = Field(default="regular", validation_alias=AliasChoices("kind", "type"))


class SubsequentYearIn(CamelModel):
    total_nominal: Decimal
    frequency: str


class PlanInputsIn(CamelModel):
    sales_discount_percent: Decimal = Decimal("0")
    dp_type: str = "percentage"
    dp_value: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("dpValue", "downPaymentValue", "dp_value"))
    duration_years: int = Field(default=6, validation_alias=AliasChoices("durationYears", "planDurationYears", "duration_years"))
    frequency: str = Field(
        default="quarterly", validation_alias=AliasChoices("frequency", "installmentFrequency")
    )
    handover_year: int = 3
    additional_handover_payment: Decimal = Decimal("0")
    split_first_year: bool = Field(
        default=False, validation_alias=AliasChoices("splitFirstYear", "splitFirstYearPayments", "split_first_year")
    )
    first_year_payments: List[FirstYearPaymentIn] = Field(default_factory=list)
    subsequent_years: List[SubsequentYearIn] = Field(default_factory=list)
    maintenance_amount: Decimal = Field(
        default=Decimal("0"), validation_alias=AliasChoices("maintenanceAmount", "maintenancePaymentAmount")
    )
    maintenance_month: int = Field(default=0, validation_alias=AliasChoices("maintenanceMonth", "maintenancePaymentMonth"))
    maintenance_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("maintenanceDate", "maintenancePaymentDate")
    )
    garage_amount: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("garageAmount", "garagePaymentAmount"))
    garage_month: int = Field(default=0, validation_alias=AliasChoices("garageMonth", "garagePaymentMonth"))
    garage_date: Optional[date] = Field(default=None, validation_alias=AliasChoices("garageDate", "garagePaymentDate"))
    offer_date: Optional[date] = None
    first_payment_date: Optional[date] = None

    def to_inputs(self) -> CustomPlanInputs:
        return CustomPlanInputs(
            sales_discount_percent=self.sales_discount_percent,
            dp_type=self.dp_type,
            dp_value=self.dp_value,
            duration_years=self.duration_years,
            frequency=self.frequency,
            handover_year=self.handover_year,
            additional_handover_payment=self.additional_handover_payment,
            split_first_year=self.split_first_year,
            first_year_payments=tuple(
                FirstYearPayment(amount=item.amount, month=item.month, kind=item.kind) for item in self.first_year_payments
            ),
            subsequent_years=tuple(
                SubsequentYear(total_nominal=item.total_nominal, frequency=item.frequency) for item in self.subsequent_years
            ),
            maintenance_amount=self.maintenance_amount,
            maintenance_month=self.maintenance_month,
            maintenance_date=self.maintenance_date,
            garage_amount=self.garage_amount,
            garage_month=self.garage_month,
            garage_date=self.garage_date,
            offer_date=self.offer_date,
            first_payment_date=self.first_payment_date,
        )


class CalculateRequest(CamelModel):
    mode: str
    std_plan: Optional[StandardPlanIn] = None
    unit_id: Optional[int] = None
    inputs: PlanInputsIn = Field(default_factory=PlanInputsIn)
    language: Literal["en", "ar"] = "en"
    currency: str = "EGP"
    base_date: Optional[date] = None

    def to_request(self) -> CalculationRequest:
        return CalculationRequest(
            mode=PlanMode.parse(self.mode),
            inputs=self.inputs.to_inputs(),
            std_plan=self.std_plan.to_plan() if self.std_plan else None,
            unit_id=self.unit_id,
            language=self.language,
            currency=self.currency,
            base_date=self.base_date,
        )


class BuyerIn(BaseModel):
    buyer_name: str
    id_or_passport: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    phone_primary: Optional[str] = None
    phone_secondary: Optional[str] = None
    email: Optional[str] = None


class DealCreate(CamelModel):
    title: Optional[str] = None
    calculation: CalculateRequest
    buyers: List[BuyerIn] = Field(default_factory=list, max_length=4)


class DealSnapshotUpdate(CamelModel):
    calculation: CalculateRequest
    buyers: Optional[List[BuyerIn]] = Field(default=None, max_length=4)


class TransitionRequest(CamelModel):
    reason: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)

    def history_notes(self) -> Dict[str, Any]:
        notes = dict(self.notes)
        if self.reason:
            notes["reason"] = self.reason
        return notes


class DealRead(OrmModel):
    id: int
    title: Optional[str]
    created_by: int
    creator_role: str
    unit_id: Optional[int]
    status: str
    override_status: str
    decision: str
    needs_override: bool
    edits_requested: bool
    payment_plan_id: int
    amount: Decimal
    details: Dict[str, Any]
    rejection_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime


class BlockCreate(CamelModel):
    unit_id: int
    deal_id: int
    duration_days: Optional[int] = None
    reason: Optional[str] = None


class BlockExtend(CamelModel):
    additional_days: int
    reason: Optional[str] = None


class UnblockCreate(CamelModel):
    unit_id: int
    reason: Optional[str] = None


class BlockRead(OrmModel):
    id: int
    unit_id: int
    deal_id: int
    requested_by: int
    status: str
    duration_days: int
    reason: Optional[str]
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    expires_at: Optional[datetime]
    extension_count: int
    unblock_stage: Optional[str]
    unblock_reason: Optional[str]
    decision_reason: Optional[str]
    version: int


class ReservationCreate(CamelModel):
    deal_id: int
    reservation_date: date
    preliminary_payment: Decimal = Decimal("0")
    preliminary_date: Optional[date] = None
    language: Literal["en", "ar"] = "en"


class DpPaymentUpdate(CamelModel):
    preliminary_amount: Optional[Decimal] = None
    preliminary_date: Optional[date] = None
    paid_amount: Optional[Decimal] = None
    paid_date: Optional[date] = None


class ReservationRead(OrmModel):
    id: int
    deal_id: int
    payment_plan_id: int
    unit_id: Optional[int]
    status: str
    reservation_date: date
    preliminary_payment: Decimal
    language: str
    details: Dict[str, Any]
    rejection_reason: Optional[str]
    version: int


class ContractCreate(CamelModel):
    reservation_form_id: int


class ContractRead(OrmModel):
    id: int
    reservation_form_id: int
    deal_id: int
    status: str
    created_by: int
    approvers: List[Dict[str, Any]]
    rejection_reason: Optional[str]
    executed_at: Optional[datetime]
    version: int
    created_at: datetime


class UnitCreate(CamelModel):
    code: str
    unit_type: Optional[str] = None
    model_code: Optional[str] = None
    area: Optional[Decimal] = None
    garden_area: Optional[Decimal] = None
    building_number: Optional[str] = None
    block_sector: Optional[str] = None
    zone: Optional[str] = None
    draft: bool = False


class UnitRead(OrmModel):
    id: int
    code: str
    unit_type: Optional[str]
    model_code: Optional[str]
    area: Optional[Decimal]
    garden_area: Optional[Decimal]
    status: str
    available: bool
    version: int


class ModelPricingCreate(CamelModel):
    model_code: str
    list_price: Decimal
    annual_rate_percent: Decimal
    duration_years: int
    frequency: str
    maintenance_price: Decimal = Decimal("0")
    garage_price: Decimal = Decimal("0")


class ModelPricingRead(OrmModel):
    id: int
    model_code: str
    list_price: Decimal
    maintenance_price: Decimal
    garage_price: Decimal
    annual_rate_percent: Decimal
    duration_years: int
    frequency: str
    status: str


class PricingDecision(CamelModel):
    decision: Literal["approve", "reject"]


class ThresholdsUpdate(CamelModel):
    first_year_percent_min: Optional[Decimal] = None
    first_year_percent_max: Optional[Decimal] = None
    second_year_percent_min: Optional[Decimal] = None
    second_year_percent_max: Optional[Decimal] = None
    handover_percent_min: Optional[Decimal] = None
    handover_percent_max: Optional[Decimal] = None
    dp_percent_min: Optional[Decimal] = None
    dp_percent_max: Optional[Decimal] = None


class HistoryRead(OrmModel):
    id: int
    entity: str
    entity_id: int
    action: str
    actor_id: Optional[int]
    actor_role: Optional[str]
    at: datetime
    notes: Optional[Any]
    reconciled: bool


class NotificationRead(OrmModel):
    id: int
    user_id: Optional[int]
    role: Optional[str]
    event: str
    title: str
    message: str
    payload: Optional[Dict[str, Any]]
    created_at: datetime
    read_at: Optional[datetime]


class DocumentRequest(CamelModel):
    document_type: Literal["pricing_form", "reservation_form", "contract"]
    deal_id: int
    language: Literal["en", "ar"] = "en"
