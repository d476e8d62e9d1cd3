"""Async client for the hosted clinic backend (PostgREST over httpx).

Implements ``ClinicStore`` against the ``appointments``, ``invoices``,
``invoice_items``, ``medicines`` and ``medical_records`` tables. Requests are
authenticated with the signed-in user's access token when a session is given,
otherwise with the project's anonymous key.
"""
from __future__ import annotations

import datetime as dt
import logging

import httpx
from pydantic_core import to_jsonable_python

from . import config
from .errors import NotFound
from .models import (
    Appointment,
    AppointmentStatus,
    Invoice,
    InvoiceLineItem,
    MedicalRecord,
    StockMovement,
    StockRecord,
)
from .session import SessionContext
from .store import ClinicStore

logger = logging.getLogger(__name__)

_APPOINTMENT_ORDER = "date.asc,time.asc"


class SupabaseStore(ClinicStore):
    def __init__(self, session: SessionContext | None = None):
        self.session = session

    def _headers(self, **extra: str) -> dict[str, str]:
        token = self.session.access_token if self.session and self.session.access_token else config.ANON_KEY
        headers = {
            "apikey": config.ANON_KEY,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        headers.update(extra)
        return headers

    def _url(self, table: str) -> str:
        return f"{config.BASE_URL}/rest/v1/{table}"

    async def _request(self, method: str, table: str, *, params: dict | None = None,
                       json: object = None, prefer: str | None = None) -> list[dict]:
        headers = self._headers(Prefer=prefer) if prefer else self._headers()
        async with httpx.AsyncClient(http2=True, timeout=config.HTTP_TIMEOUT) as client:
            resp = await client.request(method, self._url(table), headers=headers, params=params, json=json)
            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError:
                logger.error("%s %s failed with %s: %s", method, table, resp.status_code, resp.text[:200])
                raise
        logger.debug("%s %s %s -> %s", method, table, params, resp.status_code)
        if not resp.content:
            return []
        return resp.json()

    # Appointments

    async def get_all(self) -> list[Appointment]:
        rows = await self._request("GET", "appointments", params={"select": "*", "order": _APPOINTMENT_ORDER})
        return [Appointment.model_validate(row) for row in rows]

    async def get_by_date(self, date: dt.date) -> list[Appointment]:
        params = {"select": "*", "date": f"eq.{date.isoformat()}", "order": "time.asc"}
        rows = await self._request("GET", "appointments", params=params)
        return [Appointment.model_validate(row) for row in rows]

    async def get(self, appointment_id: str) -> Appointment | None:
        rows = await self._request("GET", "appointments", params={"select": "*", "id": f"eq.{appointment_id}"})
        if not rows:
            return None
        return Appointment.model_validate(rows[0])

    async def list_for_practitioner(self, practitioner_id: str, date: dt.date) -> list[Appointment]:
        params = {
            "select": "id,patient_id,doctor_id,date,time,duration,status",
            "doctor_id": f"eq.{practitioner_id}",
            "date": f"eq.{date.isoformat()}",
            "status": f"neq.{AppointmentStatus.CANCELLED.value}",
        }
        rows = await self._request("GET", "appointments", params=params)
        return [Appointment.model_validate(row) for row in rows]

    async def create(self, appointment: Appointment) -> Appointment:
        rows = await self._request("POST", "appointments", json=appointment.to_row(), prefer="return=representation")
        return Appointment.model_validate(rows[0])

    async def update(self, appointment_id: str, changes: dict) -> Appointment:
        rows = await self._request(
            "PATCH", "appointments",
            params={"id": f"eq.{appointment_id}"},
            json=to_jsonable_python(changes),
            prefer="return=representation",
        )
        if not rows:
            raise NotFound(f"appointment {appointment_id} not found")
        return Appointment.model_validate(rows[0])

    async def delete(self, appointment_id: str) -> None:
        await self._request("DELETE", "appointments", params={"id": f"eq.{appointment_id}"})

    # Billing

    async def list_invoices(self) -> list[Invoice]:
        rows = await self._request("GET", "invoices", params={"select": "*,items:invoice_items(*)", "order": "created_at.desc"})
        return [Invoice.model_validate(row) for row in rows]

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        rows = await self._request("GET", "invoices", params={"select": "*", "id": f"eq.{invoice_id}"})
        if not rows:
            return None
        return Invoice.model_validate(rows[0])

    async def list_line_items(self, invoice_id: str) -> list[InvoiceLineItem]:
        params = {"select": "description,quantity,unit_price", "invoice_id": f"eq.{invoice_id}"}
        rows = await self._request("GET", "invoice_items", params=params)
        return [InvoiceLineItem.model_validate(row) for row in rows]

    async def latest_invoice_id(self, prefix: str) -> str | None:
        params = {"select": "id", "id": f"like.{prefix}*", "order": "id.desc", "limit": "1"}
        rows = await self._request("GET", "invoices", params=params)
        return rows[0]["id"] if rows else None

    # Inventory

    async def list_stock_records(self) -> list[StockRecord]:
        rows = await self._request("GET", "medicines", params={"select": "*", "order": "name.asc"})
        return [StockRecord.model_validate(row) for row in rows]

    async def get_stock_record(self, record_id: str) -> StockRecord | None:
        rows = await self._request("GET", "medicines", params={"select": "*", "id": f"eq.{record_id}"})
        if not rows:
            return None
        return StockRecord.model_validate(rows[0])

    async def save_stock_movement(self, movement: StockMovement, record: StockRecord) -> StockRecord:
        await self._request("POST", "stock_movements", json=movement.model_dump(mode="json", by_alias=True, exclude_none=True))
        rows = await self._request(
            "PATCH", "medicines",
            params={"id": f"eq.{record.id}"},
            json={"current_stock": record.current_stock},
            prefer="return=representation",
        )
        if not rows:
            raise NotFound(f"stock record {record.id} not found")
        return StockRecord.model_validate(rows[0])

    # Consultations

    async def list_medical_records(self, patient_id: str) -> list[MedicalRecord]:
        params = {
            "select": "*,prescriptions(*)",
            "patient_id": f"eq.{patient_id}",
            "order": "date.desc",
        }
        rows = await self._request("GET", "medical_records", params=params)
        return [MedicalRecord.model_validate(row) for row in rows]
