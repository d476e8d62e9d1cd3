import datetime as dt
import json
import pathlib

import httpx
import pytest
import respx

from clinicare.availability import is_available
from clinicare.client import SupabaseStore
from clinicare.errors import NotFound
from clinicare.models import (
    Appointment,
    AppointmentStatus,
    MovementType,
    Session,
    StockMovement,
    StockRecord,
)
from clinicare.session import SessionContext
from clinicare.timerange import TimeRange

from conftest import BASE, DAY

FIX = pathlib.Path(__file__).parent / "fixtures"


def rows(name):
    return json.loads((FIX / name).read_text())


@pytest.mark.asyncio
async def test_list_for_practitioner_filters_server_side():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/v1/appointments").respond(200, json=rows("appointments_get.json"))

        appts = await SupabaseStore().list_for_practitioner("doc-1", DAY)

        assert [a.id for a in appts] == ["appt-123", "appt-124"]
        assert isinstance(appts[0], Appointment)
        assert appts[0].time == dt.time(9, 0)
        params = route.calls.last.request.url.params
        assert params["doctor_id"] == "eq.doc-1"
        assert params["date"] == "eq.2024-01-20"
        assert params["status"] == "neq.cancelled"


@pytest.mark.asyncio
async def test_availability_against_backend():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").respond(200, json=rows("appointments_get.json"))
        store = SupabaseStore()

        assert await is_available(store, "doc-1", DAY, TimeRange.parse("09:30", 30))
        assert not await is_available(store, "doc-1", DAY, TimeRange.parse("10:30", 30))


@pytest.mark.asyncio
async def test_requests_use_session_token():
    ctx = SessionContext(storage_path="/nonexistent/session.json")
    ctx.session = Session(access_token="user-token", refresh_token="r", user_id="user-1")
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/v1/appointments").respond(200, json=[])

        assert await SupabaseStore(ctx).get("appt-404") is None
        headers = route.calls.last.request.headers
        assert headers["authorization"] == "Bearer user-token"
        assert headers["apikey"] == "anon"


@pytest.mark.asyncio
async def test_create_posts_backend_columns():
    created = dict(rows("appointments_get.json")[1], id="appt-200")
    with respx.mock(base_url=BASE) as m:
        route = m.post("/rest/v1/appointments").respond(201, json=[created])
        appt = Appointment(patient_id="pat-42", practitioner_id="doc-1", date=DAY,
                           time=dt.time(10, 0), duration=45)

        stored = await SupabaseStore().create(appt)

        assert stored.id == "appt-200"
        body = json.loads(route.calls.last.request.content)
        assert body["doctor_id"] == "doc-1"
        assert body["time"] == "10:00:00"
        assert body["status"] == "scheduled"
        assert "id" not in body
        assert route.calls.last.request.headers["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_update_patches_status():
    updated = dict(rows("appointments_get.json")[0], status="cancelled")
    with respx.mock(base_url=BASE) as m:
        route = m.patch("/rest/v1/appointments").respond(200, json=[updated])

        appt = await SupabaseStore().update("appt-123", {"status": AppointmentStatus.CANCELLED})

        assert appt.status == AppointmentStatus.CANCELLED
        assert json.loads(route.calls.last.request.content) == {"status": "cancelled"}
        assert route.calls.last.request.url.params["id"] == "eq.appt-123"


@pytest.mark.asyncio
async def test_update_of_missing_row_is_not_found():
    with respx.mock(base_url=BASE) as m:
        m.patch("/rest/v1/appointments").respond(200, json=[])
        with pytest.raises(NotFound):
            await SupabaseStore().update("nope", {"duration": 15})


@pytest.mark.asyncio
async def test_backend_errors_propagate():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/appointments").respond(503, json={"message": "unavailable"})
        with pytest.raises(httpx.HTTPStatusError):
            await SupabaseStore().get_by_date(DAY)


@pytest.mark.asyncio
async def test_medical_records_with_prescriptions():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/medical_records").respond(200, json=rows("medical_records_get.json"))

        records = await SupabaseStore().list_medical_records("pat-99")

        assert records[0].practitioner_id == "doc-1"
        assert records[0].prescriptions[0].dosage == "80/480 mg"


@pytest.mark.asyncio
async def test_latest_invoice_id():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/v1/invoices").respond(200, json=[{"id": "INV-2024-01007"}])

        assert await SupabaseStore().latest_invoice_id("INV-2024-01") == "INV-2024-01007"
        assert route.calls.last.request.url.params["id"] == "like.INV-2024-01*"


INVOICE_ROW = {"id": "INV-2024-01001", "patient_id": "pat-1", "date": "2024-01-20", "tax": "1000",
               "status": "pending", "payment_method": None, "paid_at": None}
MEDICINE_ROW = {"id": "med-1", "name": "Amoxicilline", "category": "medication", "current_stock": 12,
                "min_stock": 20, "unit_price": "250", "expiry_date": "2025-06-30", "batch_number": "B-77"}


@pytest.mark.asyncio
async def test_list_invoices_embeds_line_items():
    listed = dict(INVOICE_ROW, items=[{"description": "Consultation", "quantity": 2, "unit_price": "15000"}])
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/v1/invoices").respond(200, json=[listed])

        invoices = await SupabaseStore().list_invoices()

        assert route.calls.last.request.url.params["select"] == "*,items:invoice_items(*)"
    assert invoices[0].items[0].total == 30000
    assert invoices[0].tax == 1000


@pytest.mark.asyncio
async def test_get_invoice_and_line_items():
    with respx.mock(base_url=BASE) as m:
        header = m.get("/rest/v1/invoices").respond(200, json=[INVOICE_ROW])
        items = m.get("/rest/v1/invoice_items").respond(
            200, json=[{"description": "Analyse", "quantity": 1, "unit_price": "5000"}])
        store = SupabaseStore()

        invoice = await store.get_invoice("INV-2024-01001")
        lines = await store.list_line_items("INV-2024-01001")

        assert header.calls.last.request.url.params["id"] == "eq.INV-2024-01001"
        assert items.calls.last.request.url.params["invoice_id"] == "eq.INV-2024-01001"
    assert invoice.patient_id == "pat-1"
    assert [line.description for line in lines] == ["Analyse"]


@pytest.mark.asyncio
async def test_missing_invoice_is_none():
    with respx.mock(base_url=BASE) as m:
        m.get("/rest/v1/invoices").respond(200, json=[])
        assert await SupabaseStore().get_invoice("INV-1999-01001") is None


@pytest.mark.asyncio
async def test_stock_records():
    with respx.mock(base_url=BASE) as m:
        route = m.get("/rest/v1/medicines").respond(200, json=[MEDICINE_ROW])
        store = SupabaseStore()

        records = await store.list_stock_records()
        assert route.calls.last.request.url.params["order"] == "name.asc"
        record = await store.get_stock_record("med-1")
        assert route.calls.last.request.url.params["id"] == "eq.med-1"

        route.respond(200, json=[])
        assert await store.get_stock_record("med-404") is None
    assert records[0].batch_number == "B-77"
    assert record.current_stock == 12
    assert record.expiry_date == dt.date(2025, 6, 30)


@pytest.mark.asyncio
async def test_save_stock_movement_logs_then_updates_level():
    record = StockRecord.model_validate(dict(MEDICINE_ROW, current_stock=42))
    movement = StockMovement(medicine_id="med-1", type=MovementType.IN, quantity=30, reason="Livraison",
                             created_by="user-1")
    with respx.mock(base_url=BASE) as m:
        logged = m.post("/rest/v1/stock_movements").respond(201)
        patched = m.patch("/rest/v1/medicines").respond(200, json=[dict(MEDICINE_ROW, current_stock=42)])

        saved = await SupabaseStore().save_stock_movement(movement, record)

        assert json.loads(logged.calls.last.request.content) == {
            "medicine_id": "med-1", "type": "in", "quantity": 30, "reason": "Livraison", "user_id": "user-1",
        }
        request = patched.calls.last.request
        assert request.url.params["id"] == "eq.med-1"
        assert json.loads(request.content) == {"current_stock": 42}
        assert request.headers["prefer"] == "return=representation"
    assert saved.current_stock == 42
