import datetime as dt

import pytest

from clinicare import config
from clinicare.models import Appointment, AppointmentStatus
from clinicare.store import InMemoryStore

BASE = "https://clinic.test"
DAY = dt.date(2024, 1, 20)


@pytest.fixture(autouse=True)
def backend_config(monkeypatch, tmp_path):
    # keep every test away from a real backend and the user's session cache
    monkeypatch.setattr(config, "BASE_URL", BASE)
    monkeypatch.setattr(config, "ANON_KEY", "anon")
    monkeypatch.setattr(config, "API_KEY", "secret")
    monkeypatch.setattr(config, "SESSION_FILE", str(tmp_path / "session.json"))
    monkeypatch.delenv("OFFLINE_MODE", raising=False)


def make_appt(appt_id, start="09:00", duration=30, status=AppointmentStatus.SCHEDULED,
              practitioner="doc-1", date=DAY, patient="pat-1"):
    return Appointment(
        id=appt_id,
        patient_id=patient,
        practitioner_id=practitioner,
        date=date,
        time=dt.time.fromisoformat(start),
        duration=duration,
        status=status,
    )


@pytest.fixture
def store():
    """Practitioner doc-1 holds a confirmed 09:00-09:30 slot on 2024-01-20."""
    return InMemoryStore([make_appt("a1", status=AppointmentStatus.CONFIRMED)])
