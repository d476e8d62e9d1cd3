"""Data-access interface for the rules layer and an in-memory implementation.

The live implementation is ``client.SupabaseStore``; ``InMemoryStore`` backs
OFFLINE_MODE and the tests. Both are picked at composition time.
"""
from __future__ import annotations

import abc
import datetime as dt
import logging
import uuid

from .errors import NotFound, SlotConflict
from .models import (
    Appointment,
    AppointmentStatus,
    Invoice,
    InvoiceLineItem,
    MedicalRecord,
    StockMovement,
    StockRecord,
)
from .timerange import overlaps

logger = logging.getLogger(__name__)


class ClinicStore(abc.ABC):
    """Queries the scheduling, billing and inventory rules need."""

    @abc.abstractmethod
    async def get_all(self) -> list[Appointment]: ...

    @abc.abstractmethod
    async def get_by_date(self, date: dt.date) -> list[Appointment]: ...

    @abc.abstractmethod
    async def get(self, appointment_id: str) -> Appointment | None: ...

    @abc.abstractmethod
    async def list_for_practitioner(self, practitioner_id: str, date: dt.date) -> list[Appointment]:
        """Non-cancelled appointments of one practitioner on one day."""

    @abc.abstractmethod
    async def create(self, appointment: Appointment) -> Appointment: ...

    @abc.abstractmethod
    async def update(self, appointment_id: str, changes: dict) -> Appointment: ...

    @abc.abstractmethod
    async def delete(self, appointment_id: str) -> None: ...

    @abc.abstractmethod
    async def list_invoices(self) -> list[Invoice]: ...

    @abc.abstractmethod
    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        """Invoice header; line items are read separately with list_line_items."""

    @abc.abstractmethod
    async def list_line_items(self, invoice_id: str) -> list[InvoiceLineItem]: ...

    @abc.abstractmethod
    async def latest_invoice_id(self, prefix: str) -> str | None:
        """Highest invoice id starting with ``prefix``, e.g. ``INV-2024-01``."""

    @abc.abstractmethod
    async def list_stock_records(self) -> list[StockRecord]: ...

    @abc.abstractmethod
    async def get_stock_record(self, record_id: str) -> StockRecord | None: ...

    @abc.abstractmethod
    async def save_stock_movement(self, movement: StockMovement, record: StockRecord) -> StockRecord:
        """Log ``movement`` and store ``record`` (already adjusted) as the new stock level."""

    @abc.abstractmethod
    async def list_medical_records(self, patient_id: str) -> list[MedicalRecord]: ...


class InMemoryStore(ClinicStore):
    """Dict-backed store with the same overlap backstop the database enforces."""

    def __init__(
        self,
        appointments: list[Appointment] | None = None,
        invoices: list[Invoice] | None = None,
        stock: list[StockRecord] | None = None,
        medical_records: list[MedicalRecord] | None = None,
    ):
        self.appointments: dict[str, Appointment] = {}
        for appt in appointments or []:
            appt_id = appt.id or uuid.uuid4().hex
            self.appointments[appt_id] = appt.model_copy(update={"id": appt_id})
        self.invoices: dict[str, Invoice] = {inv.id: inv for inv in invoices or [] if inv.id}
        self.stock: dict[str, StockRecord] = {rec.id: rec for rec in stock or [] if rec.id}
        self.medical_records: list[MedicalRecord] = list(medical_records or [])
        self.movements: list[StockMovement] = []

    async def get_all(self) -> list[Appointment]:
        return sorted(self.appointments.values(), key=lambda a: (a.date, a.time))

    async def get_by_date(self, date: dt.date) -> list[Appointment]:
        return [a for a in await self.get_all() if a.date == date]

    async def get(self, appointment_id: str) -> Appointment | None:
        return self.appointments.get(appointment_id)

    async def list_for_practitioner(self, practitioner_id: str, date: dt.date) -> list[Appointment]:
        return [
            a for a in await self.get_by_date(date)
            if a.practitioner_id == practitioner_id and a.status != AppointmentStatus.CANCELLED
        ]

    async def create(self, appointment: Appointment) -> Appointment:
        appt_id = appointment.id or uuid.uuid4().hex
        stored = appointment.model_copy(update={"id": appt_id, "created_at": dt.datetime.now()})
        self._guard(stored)
        self.appointments[appt_id] = stored
        logger.debug("stored appointment %s", appt_id)
        return stored

    async def update(self, appointment_id: str, changes: dict) -> Appointment:
        current = self.appointments.get(appointment_id)
        if current is None:
            raise NotFound(f"appointment {appointment_id} not found")
        updated = Appointment.model_validate({**current.model_dump(), **changes})
        self._guard(updated)
        self.appointments[appointment_id] = updated
        return updated

    async def delete(self, appointment_id: str) -> None:
        if self.appointments.pop(appointment_id, None) is None:
            raise NotFound(f"appointment {appointment_id} not found")

    async def list_invoices(self) -> list[Invoice]:
        return list(self.invoices.values())

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        return self.invoices.get(invoice_id)

    async def list_line_items(self, invoice_id: str) -> list[InvoiceLineItem]:
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise NotFound(f"invoice {invoice_id} not found")
        return list(invoice.items)

    async def latest_invoice_id(self, prefix: str) -> str | None:
        ids = sorted(i for i in self.invoices if i.startswith(prefix))
        return ids[-1] if ids else None

    async def list_stock_records(self) -> list[StockRecord]:
        return sorted(self.stock.values(), key=lambda r: r.name)

    async def get_stock_record(self, record_id: str) -> StockRecord | None:
        return self.stock.get(record_id)

    async def save_stock_movement(self, movement: StockMovement, record: StockRecord) -> StockRecord:
        if record.id not in self.stock:
            raise NotFound(f"stock record {record.id} not found")
        self.movements.append(movement)
        self.stock[record.id] = record
        return record

    async def list_medical_records(self, patient_id: str) -> list[MedicalRecord]:
        return [r for r in self.medical_records if r.patient_id == patient_id]

    def _guard(self, candidate: Appointment) -> None:
        # Uniqueness backstop: mirrors the exclusion constraint on the appointments table.
        if candidate.status == AppointmentStatus.CANCELLED:
            return
        for other in self.appointments.values():
            if (
                other.id != candidate.id
                and other.practitioner_id == candidate.practitioner_id
                and other.date == candidate.date
                and other.status != AppointmentStatus.CANCELLED
                and overlaps(other.slot, candidate.slot)
            ):
                raise SlotConflict(f"slot {candidate.slot} already taken", conflicts=[other.id])
