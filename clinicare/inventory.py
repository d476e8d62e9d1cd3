from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable
from decimal import Decimal

from .errors import NotFound, ValidationError
from .models import InventoryStats, MovementType, StockMovement, StockRecord, StockReport, StockStatus
from .store import ClinicStore

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 90


def stock_status(record: StockRecord, today: dt.date) -> StockStatus:
    """Classify a stock record; expiry wins over stock level."""
    if record.expiry_date < today:
        return StockStatus.EXPIRED
    if record.current_stock <= 0:
        return StockStatus.CRITICAL_LOW
    if record.current_stock <= record.min_stock:
        return StockStatus.LOW
    return StockStatus.OK


def expiring_soon(record: StockRecord, today: dt.date, horizon_days: int = DEFAULT_HORIZON_DAYS) -> bool:
    days_left = (record.expiry_date - today).days
    return 0 < days_left <= horizon_days


def report(record: StockRecord, today: dt.date, horizon_days: int = DEFAULT_HORIZON_DAYS) -> StockReport:
    return StockReport(
        status=stock_status(record, today),
        expiring_soon=expiring_soon(record, today, horizon_days),
    )


def apply_movement(record: StockRecord, movement: StockMovement) -> StockRecord:
    """Return ``record`` with its stock adjusted by an in/out movement."""
    if movement.quantity < 1:
        raise ValidationError(f"movement quantity must be at least 1, got {movement.quantity}")
    if movement.medicine_id != record.id:
        raise ValidationError(f"movement for {movement.medicine_id} applied to {record.id}")
    if movement.type == MovementType.IN:
        stock = record.current_stock + movement.quantity
    else:
        stock = record.current_stock - movement.quantity
        if stock < 0:
            raise ValidationError(
                f"cannot take {movement.quantity} of {record.name!r}; only {record.current_stock} in stock"
            )
    return record.model_copy(update={"current_stock": stock})


async def record_movement(store: ClinicStore, movement: StockMovement) -> StockRecord:
    """Apply ``movement`` to its stock record and persist both."""
    record = await store.get_stock_record(movement.medicine_id)
    if record is None:
        raise NotFound(f"stock record {movement.medicine_id} not found")
    updated = await store.save_stock_movement(movement, apply_movement(record, movement))
    logger.info(
        "stock %s: %s %d -> %d", record.id, movement.type.value, movement.quantity, updated.current_stock
    )
    return updated


def low_stock(records: Iterable[StockRecord]) -> list[StockRecord]:
    return sorted(
        (r for r in records if r.current_stock <= r.min_stock),
        key=lambda r: r.current_stock,
    )


def expiring(records: Iterable[StockRecord], today: dt.date, horizon_days: int = DEFAULT_HORIZON_DAYS) -> list[StockRecord]:
    return sorted(
        (r for r in records if expiring_soon(r, today, horizon_days)),
        key=lambda r: r.expiry_date,
    )


def inventory_stats(records: Iterable[StockRecord], today: dt.date, horizon_days: int = DEFAULT_HORIZON_DAYS) -> InventoryStats:
    records = list(records)
    return InventoryStats(
        total_items=len(records),
        low_stock_items=len(low_stock(records)),
        expiring_soon=len(expiring(records, today, horizon_days)),
        total_value=sum((r.current_stock * r.unit_price for r in records), Decimal("0")),
    )
