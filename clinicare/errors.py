"""Error kinds raised by the scheduling, billing and inventory rules."""


class ClinicError(Exception):
    """Base class for rule violations surfaced to the caller."""

    kind = "clinic_error"


class ValidationError(ClinicError, ValueError):
    """Malformed input: non-positive duration, negative price, quantity < 1."""

    kind = "validation_error"


class SlotConflict(ClinicError):
    """The requested range overlaps an existing non-cancelled booking."""

    kind = "slot_conflict"

    def __init__(self, message: str, conflicts: list | None = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class InvalidTransition(ClinicError):
    kind = "invalid_transition"


class NotFound(ClinicError):
    kind = "not_found"
