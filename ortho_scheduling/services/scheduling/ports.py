"""
Interfaces to the collaborators the scheduling core does not own.

Clinic context, audit logging and persistence live elsewhere; the service
shell only talks to them through these protocols.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from ...models.scheduling import (
    AppliedScheduleBlock,
    BookingTemplate,
    ExistingCommitments,
    Occurrence,
    RecurringAppointmentSeries,
    ScheduleBlock,
)


@dataclass
class AuditEvent:
    """One auditable scheduling action."""
    action: str
    resource_type: str
    resource_id: Optional[str]
    clinic_id: Optional[str] = None
    user_id: Optional[str] = None
    outcome: str = "success"  # success, failure, partial
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ClinicContext(Protocol):
    """Resolves the clinic the current request acts for."""

    def get_clinic_id(self) -> str:
        ...


class AuditRecorder(Protocol):
    """Append-only audit sink."""

    async def record(self, event: AuditEvent) -> None:
        ...


class UnitOfWork(Protocol):
    """
    Atomic write scope.

    Reads made through the unit of work see a consistent snapshot, and the
    writes staged inside one `async with` block are committed together or
    not at all.
    """

    async def __aenter__(self) -> "UnitOfWork":
        ...

    async def __aexit__(self, exc_type, exc, tb) -> None:
        ...

    async def load_commitments(
        self,
        provider_id: str,
        start: date,
        end: date,
        chair_id: Optional[str] = None,
    ) -> ExistingCommitments:
        ...

    async def commit(
        self,
        series: RecurringAppointmentSeries,
        occurrences: Iterable[Occurrence] = (),
    ) -> None:
        """Stage the series and any newly created occurrences."""
        ...

    async def save_applied_blocks(
        self,
        provider_id: Optional[str],
        blocks: List[AppliedScheduleBlock],
        replaced_dates: List[date],
    ) -> None:
        ...

    async def save_template(self, template: BookingTemplate) -> None:
        ...


class SchedulingRepository(Protocol):
    """Read access to scheduling data; lookups raise NotFoundError on a miss."""

    async def get_series(self, series_id: str) -> RecurringAppointmentSeries:
        ...

    async def get_template(self, template_id: str) -> BookingTemplate:
        ...

    async def list_series(self, clinic_id: Optional[str] = None) -> List[RecurringAppointmentSeries]:
        """Every series visible to a clinic (all series when clinic_id is None)."""
        ...

    async def get_patient(self, patient_id: str) -> Dict[str, Any]:
        ...

    async def get_provider(self, provider_id: str) -> Dict[str, Any]:
        ...

    async def get_appointment_type(self, appointment_type_id: str) -> Dict[str, Any]:
        ...

    async def get_commitments(
        self,
        provider_id: str,
        start: date,
        end: date,
        chair_id: Optional[str] = None,
    ) -> ExistingCommitments:
        ...

    async def get_schedule_blocks(self, provider_id: str, on: date) -> List[ScheduleBlock]:
        """Template blocks in force for a provider on a date."""
        ...

    async def get_applied_blocks(
        self,
        provider_id: Optional[str],
        start: date,
        end: date,
    ) -> List[AppliedScheduleBlock]:
        ...

    def unit_of_work(self) -> UnitOfWork:
        ...
