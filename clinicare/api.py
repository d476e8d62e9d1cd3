import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import billing, config, inventory, lifecycle
from .availability import conflicts_for
from .client import SupabaseStore
from .errors import ClinicError, InvalidTransition, NotFound, SlotConflict, ValidationError
from .models import (
    Appointment,
    AppointmentStats,
    AvailabilityResponse,
    BillingStats,
    BookRequest,
    InventoryStats,
    Invoice,
    InvoiceDraft,
    InvoiceTotals,
    MedicalRecord,
    RescheduleRequest,
    StockMovement,
    StockReport,
    StockRecord,
    TransitionRequest,
)
from .session import SessionContext
from .store import ClinicStore, InMemoryStore
from .timerange import TimeRange

config.configure_logging()
logger = logging.getLogger(__name__)

# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Restore the signed-in session once; requests share it through get_session."""
    session = SessionContext()
    profile = await session.restore()
    if profile:
        logger.info("restored session for %s (%s)", profile.email, profile.role.value)
    else:
        logger.warning("no signed-in session; backend calls use the anonymous key")
    app.state.session = session
    yield


app = FastAPI(title="Clinicare Scheduling Service", lifespan=lifespan)

_offline_store = InMemoryStore()

_STATUS_FOR = {
    ValidationError: 422,
    SlotConflict: 409,
    InvalidTransition: 409,
    NotFound: 404,
}


def verify_caller(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != config.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_session(request: Request) -> SessionContext:
    return request.app.state.session


def get_store(session: SessionContext = Depends(get_session)) -> ClinicStore:
    """In OFFLINE_MODE serve from process memory, otherwise from the backend as the session user."""
    if config.offline_mode():
        return _offline_store
    return SupabaseStore(session)


@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    status = next((code for kind, code in _STATUS_FOR.items() if isinstance(exc, kind)), 400)
    body = {"detail": str(exc), "error": exc.kind}
    if isinstance(exc, SlotConflict):
        body["conflicts"] = exc.conflicts
    return JSONResponse(status_code=status, content=body)


# Scheduling -------------------------------------------------------------

@app.get("/availability", dependencies=[Depends(verify_caller)], response_model=AvailabilityResponse)
async def check_availability(
    practitioner_id: str = Query(...),
    date: dt.date = Query(..., description="YYYY-MM-DD"),
    time: str = Query(..., description="HH:MM start time"),
    duration: int = Query(30, description="Minutes"),
    exclude: Optional[str] = Query(None, description="Appointment being edited"),
    store: ClinicStore = Depends(get_store),
):
    slot = TimeRange.parse(time, duration)
    found = await conflicts_for(store, practitioner_id, date, slot, exclude)
    return AvailabilityResponse(available=not found, conflicts=[a.id for a in found])


@app.post("/appointments", dependencies=[Depends(verify_caller)], response_model=Appointment, status_code=201)
async def book_appointment(
    req: BookRequest,
    session: SessionContext = Depends(get_session),
    store: ClinicStore = Depends(get_store),
):
    return await lifecycle.book(store, req, created_by=session.user_id)


@app.get("/appointments", dependencies=[Depends(verify_caller)], response_model=list[Appointment])
async def list_appointments(
    date: Optional[dt.date] = Query(None, description="YYYY-MM-DD; all appointments when omitted"),
    store: ClinicStore = Depends(get_store),
):
    if date is None:
        return await store.get_all()
    return await store.get_by_date(date)


@app.get("/appointments/stats", dependencies=[Depends(verify_caller)], response_model=AppointmentStats)
async def get_appointment_stats(
    today: Optional[dt.date] = Query(None),
    store: ClinicStore = Depends(get_store),
):
    return lifecycle.appointment_stats(await store.get_all(), today or dt.date.today())


@app.get("/appointments/{appointment_id}", dependencies=[Depends(verify_caller)], response_model=Appointment)
async def get_appointment(appointment_id: str, store: ClinicStore = Depends(get_store)):
    appt = await store.get(appointment_id)
    if not appt:
        raise HTTPException(status_code=404, detail="No appointment found")
    return appt


@app.post("/appointments/{appointment_id}/status", dependencies=[Depends(verify_caller)], response_model=Appointment)
async def change_status(appointment_id: str, req: TransitionRequest, store: ClinicStore = Depends(get_store)):
    return await lifecycle.transition(store, appointment_id, req.status, today=req.today)


@app.post("/appointments/{appointment_id}/reschedule", dependencies=[Depends(verify_caller)], response_model=Appointment)
async def reschedule_appointment(appointment_id: str, req: RescheduleRequest, store: ClinicStore = Depends(get_store)):
    return await lifecycle.reschedule(store, appointment_id, req)


@app.delete("/appointments/{appointment_id}", dependencies=[Depends(verify_caller)], status_code=204)
async def delete_appointment(
    appointment_id: str,
    session: SessionContext = Depends(get_session),
    store: ClinicStore = Depends(get_store),
):
    """Administrative hard delete for the signed-in admin; everyone else cancels."""
    await lifecycle.hard_delete(store, appointment_id, session.role)
    return None


# Billing ----------------------------------------------------------------

@app.post("/invoices/totals", dependencies=[Depends(verify_caller)], response_model=InvoiceTotals)
async def compute_totals(draft: InvoiceDraft):
    return billing.totals(draft.items, draft.tax)


@app.post("/invoices/finalize", dependencies=[Depends(verify_caller)])
async def finalize_invoice(
    invoice: Invoice,
    today: Optional[dt.date] = Query(None),
    store: ClinicStore = Depends(get_store),
):
    """Validate an invoice for issue and assign its number if it has none."""
    sums = billing.validate_for_finalization(invoice)
    invoice_id = invoice.id
    if invoice_id is None:
        today = today or dt.date.today()
        last = await store.latest_invoice_id(f"INV-{today.year}-{today.month:02d}")
        invoice_id = billing.next_invoice_number(last, today)
    return {"id": invoice_id, **sums.model_dump(mode="json")}


@app.get("/invoices/{invoice_id}/totals", dependencies=[Depends(verify_caller)], response_model=InvoiceTotals)
async def stored_invoice_totals(invoice_id: str, store: ClinicStore = Depends(get_store)):
    """Recompute a stored invoice's totals from its current line items."""
    return await billing.totals_for(store, invoice_id)


@app.get("/invoices/stats", dependencies=[Depends(verify_caller)], response_model=BillingStats)
async def get_billing_stats(today: Optional[dt.date] = Query(None), store: ClinicStore = Depends(get_store)):
    today = today or dt.date.today()
    invoices = [billing.mark_overdue(inv, today) for inv in await store.list_invoices()]
    return billing.billing_stats(invoices, today)


# Inventory --------------------------------------------------------------

@app.post("/inventory/status", dependencies=[Depends(verify_caller)], response_model=StockReport)
async def classify_stock(
    record: StockRecord,
    today: Optional[dt.date] = Query(None),
    horizon_days: int = Query(config.EXPIRY_HORIZON_DAYS),
):
    return inventory.report(record, today or dt.date.today(), horizon_days)


@app.get("/inventory/stats", dependencies=[Depends(verify_caller)], response_model=InventoryStats)
async def get_inventory_stats(today: Optional[dt.date] = Query(None), store: ClinicStore = Depends(get_store)):
    records = await store.list_stock_records()
    return inventory.inventory_stats(records, today or dt.date.today(), config.EXPIRY_HORIZON_DAYS)


@app.get("/inventory/{record_id}/status", dependencies=[Depends(verify_caller)], response_model=StockReport)
async def stock_record_status(
    record_id: str,
    today: Optional[dt.date] = Query(None),
    store: ClinicStore = Depends(get_store),
):
    record = await store.get_stock_record(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="No stock record found")
    return inventory.report(record, today or dt.date.today(), config.EXPIRY_HORIZON_DAYS)


@app.post("/inventory/movements", dependencies=[Depends(verify_caller)], response_model=StockRecord, status_code=201)
async def record_stock_movement(
    movement: StockMovement,
    session: SessionContext = Depends(get_session),
    store: ClinicStore = Depends(get_store),
):
    """Log a stock in/out movement and return the adjusted record."""
    movement = movement.model_copy(update={"created_by": session.user_id})
    return await inventory.record_movement(store, movement)


# Consultations ----------------------------------------------------------

@app.get("/patients/{patient_id}/records", dependencies=[Depends(verify_caller)], response_model=list[MedicalRecord])
async def list_medical_records(patient_id: str, store: ClinicStore = Depends(get_store)):
    return await store.list_medical_records(patient_id)
