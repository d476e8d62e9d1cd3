from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from .timerange import TimeRange


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile-money"


class StockCategory(str, Enum):
    MEDICATION = "medication"
    MEDICAL_SUPPLY = "medical-supply"
    EQUIPMENT = "equipment"
    CONSUMABLE = "consumable"
    DIAGNOSTIC = "diagnostic"


class StockStatus(str, Enum):
    EXPIRED = "expired"
    CRITICAL_LOW = "critical-low"
    LOW = "low"
    OK = "ok"


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    SECRETARY = "secretary"


# Scheduling

class Appointment(BaseModel):
    id: str | None = None
    patient_id: str
    practitioner_id: str = Field(alias="doctor_id")
    date: dt.date
    time: dt.time  # start time, naive local
    duration: int  # minutes
    reason: str = ""
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: str | None = None
    created_by: str | None = None
    created_at: dt.datetime | None = None

    model_config = {
        "populate_by_name": True
    }

    @property
    def slot(self) -> TimeRange:
        return TimeRange(self.time, self.duration)

    def to_row(self) -> dict:
        """Serialize with backend column names, dropping unset identity fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BookRequest(BaseModel):
    patient_id: str
    practitioner_id: str
    date: dt.date
    time: dt.time
    duration: int = 30
    reason: str = ""
    notes: str | None = None


class RescheduleRequest(BaseModel):
    date: dt.date | None = None
    time: dt.time | None = None
    duration: int | None = None


class TransitionRequest(BaseModel):
    status: AppointmentStatus
    today: dt.date | None = None


class AvailabilityResponse(BaseModel):
    available: bool
    conflicts: list[str] = []  # ids of blocking appointments


class AppointmentStats(BaseModel):
    today_total: int = 0
    today_confirmed: int = 0
    today_pending: int = 0
    today_completed: int = 0
    total: int = 0
    this_month: int = 0


# Billing

class InvoiceLineItem(BaseModel):
    description: str
    quantity: int = 1
    unit_price: Decimal = Decimal("0")

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.quantity * self.unit_price


class Invoice(BaseModel):
    id: str | None = None
    patient_id: str
    appointment_id: str | None = None
    date: dt.date
    items: list[InvoiceLineItem] = []
    tax: Decimal = Decimal("0")  # absolute amount, not a rate
    status: InvoiceStatus = InvoiceStatus.PENDING
    payment_method: PaymentMethod | None = None
    paid_at: dt.datetime | None = None


class InvoiceTotals(BaseModel):
    subtotal: Decimal
    tax: Decimal
    total: Decimal


class InvoiceDraft(BaseModel):
    items: list[InvoiceLineItem] = []
    tax: Decimal = Decimal("0")


class Payment(BaseModel):
    invoice_id: str
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    paid_at: dt.datetime | None = None


class BillingStats(BaseModel):
    total_revenue: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    pending_amount: Decimal = Decimal("0")
    overdue_amount: Decimal = Decimal("0")
    monthly_revenue: Decimal = Decimal("0")
    total_invoices: int = 0
    paid_invoices: int = 0


# Inventory

class StockRecord(BaseModel):
    id: str | None = None
    name: str
    category: StockCategory = StockCategory.MEDICATION
    current_stock: int = 0
    min_stock: int = 0
    unit_price: Decimal = Decimal("0")
    expiry_date: dt.date
    manufacturer: str | None = None
    batch_number: str | None = None
    location: str | None = None


class StockMovement(BaseModel):
    medicine_id: str
    type: MovementType
    quantity: int
    reason: str = ""
    date: dt.date | None = None
    created_by: str | None = Field(None, alias="user_id")

    model_config = {
        "populate_by_name": True
    }


class StockReport(BaseModel):
    status: StockStatus
    expiring_soon: bool


class InventoryStats(BaseModel):
    total_items: int = 0
    low_stock_items: int = 0
    expiring_soon: int = 0
    total_value: Decimal = Decimal("0")


# Consultations

class Prescription(BaseModel):
    medication: str
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""


class MedicalRecord(BaseModel):
    id: str | None = None
    patient_id: str
    practitioner_id: str = Field(alias="doctor_id")
    date: dt.date
    reason: str = ""
    symptoms: str = ""
    diagnosis: str = ""
    treatment: str = ""
    prescriptions: list[Prescription] = []
    notes: str = ""
    attachments: list[str] = []

    model_config = {
        "populate_by_name": True
    }


# Identity

class UserProfile(BaseModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: Role = Role.SECRETARY
    speciality: str | None = None
    phone: str | None = None
    is_active: bool = True


class Session(BaseModel):
    access_token: str
    refresh_token: str
    user_id: str
    expires_at: float = 0.0  # epoch seconds
