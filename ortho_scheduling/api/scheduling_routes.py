"""
Scheduling API Routes
RESTful API endpoints for recurring appointments and provider availability.

This module provides endpoints for:
- Recurrence previews
- Provider availability and conflict checks
- Recurring series creation, listing, materialization and occurrence management
- Booking template validation, storage and application

Domain errors are raised as-is and rendered by the handlers registered in
app_factory.
"""

from datetime import date
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.responses import JSONResponse

from ..constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, OccurrenceStatus, RecurrencePattern, RecurringStatus
from ..exceptions import InvalidRecurrenceSpecError, InvalidScheduleError
from ..models.parsing import parse_model
from ..models.scheduling import (
    ApplyTemplateRequest,
    AvailabilityQuery,
    CandidateBooking,
    MaterializeRequest,
    OccurrenceUpdate,
    RecurrencePreviewRequest,
)
from ..services.recurring_appointment_service import RecurringAppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scheduling", tags=["scheduling"])

# Global service instance (set by the app factory, or built on first use)
_scheduling_service: Optional[RecurringAppointmentService] = None


def set_scheduling_service(service: Optional[RecurringAppointmentService]):
    """Install the service used by the routes (None resets it)."""
    global _scheduling_service
    _scheduling_service = service


async def get_scheduling_service() -> RecurringAppointmentService:
    """
    Get or initialize RecurringAppointmentService.

    Without an installed service, falls back to an in-memory store seeded
    with the demo clinic.
    """
    global _scheduling_service

    if _scheduling_service is None:
        from ..storage import InMemoryAuditRecorder, InMemorySchedulingStore, StaticClinicContext
        from ..utils.demo_clinic import seed_demo_clinic

        logger.warning("No scheduling service configured, using in-memory demo store")
        store = InMemorySchedulingStore()
        clinic_id = seed_demo_clinic(store)
        _scheduling_service = RecurringAppointmentService(
            repository=store,
            clinic_context=StaticClinicContext(clinic_id),
            audit=InMemoryAuditRecorder(),
        )

    return _scheduling_service


# ============================================================================
# Recurrence & Availability Endpoints
# ============================================================================

@router.post("/recurrence/preview")
async def preview_recurrence(
    payload: Dict[str, Any] = Body(...),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """
    Validate a recurrence rule and list the dates it produces.

    ## Example
    ```json
    {
      "recurrence": {
        "pattern": "WEEKLY",
        "days_of_week": [1, 3, 5],
        "start_date": "2025-01-06",
        "max_occurrences": 6
      }
    }
    ```
    """
    request = parse_model(RecurrencePreviewRequest, payload, InvalidRecurrenceSpecError)
    dates = await service.preview_recurrence(
        request.recurrence, request.window_start, request.window_end,
    )
    return {
        "success": True,
        "count": len(dates),
        "dates": [d.isoformat() for d in dates],
    }


@router.get("/availability")
async def get_availability(
    provider_id: str = Query(..., min_length=1),
    on: date = Query(..., alias="date"),
    duration: int = Query(30, description="Appointment length in minutes"),
    appointment_type_id: Optional[str] = Query(None),
    chair_id: Optional[str] = Query(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """
    Free intervals and bookable slots for a provider on a date.

    ## Query Parameters
    - **provider_id**: Provider to check
    - **date**: Calendar date (YYYY-MM-DD)
    - **duration**: Minutes needed (default 30, max 480)
    - **appointment_type_id**: Only count blocks that accept this type
    - **chair_id**: Also exclude time already booked in this chair
    """
    query = parse_model(
        AvailabilityQuery,
        {
            "provider_id": provider_id,
            "date": on,
            "duration": duration,
            "appointment_type_id": appointment_type_id,
            "chair_id": chair_id,
        },
        InvalidScheduleError,
    )
    availability = await service.get_availability(query)
    return {"success": True, **availability}


@router.post("/conflicts/check")
async def check_conflict(
    payload: Dict[str, Any] = Body(...),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """Check one proposed booking against existing commitments."""
    candidate = parse_model(CandidateBooking, payload, InvalidScheduleError)
    conflict = await service.check_conflict(candidate)
    return {
        "success": True,
        "has_conflict": conflict is not None,
        "conflict": conflict.to_dict() if conflict else None,
    }


# ============================================================================
# Recurring Series Endpoints
# ============================================================================

@router.post("/recurring", status_code=201)
async def create_series(
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """
    Create a recurring series and generate its first occurrences.

    Conflicting dates are skipped and reported in `conflicts`.

    ## Example
    ```json
    {
      "patient_id": "patient-001",
      "provider_id": "dr-alvarez",
      "appointment_type_id": "adjustment",
      "duration": 30,
      "preferred_time": "09:00",
      "recurrence": {
        "pattern": "MONTHLY",
        "week_of_month": 1,
        "preferred_day_of_week": 2,
        "start_date": "2025-01-01",
        "max_occurrences": 12
      }
    }
    ```

    ## Errors
    - **404 Not Found**: `PATIENT_NOT_FOUND`, `PROVIDER_NOT_FOUND` or
      `APPOINTMENT_TYPE_NOT_FOUND`
    """
    series, result = await service.create_series(payload, actor=x_user_id)
    return {
        "success": True,
        "series": series.model_dump(mode="json"),
        "generation": result.summary(),
    }


@router.get("/recurring")
async def list_series(
    patient_id: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    appointment_type_id: Optional[str] = Query(None),
    status: Optional[RecurringStatus] = Query(None),
    pattern: Optional[RecurrencePattern] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """List recurring series, ordered by start date."""
    result = await service.list_series(
        patient_id=patient_id,
        provider_id=provider_id,
        appointment_type_id=appointment_type_id,
        status=status,
        pattern=pattern,
        search=search,
        page=page,
        page_size=page_size,
    )
    return {"success": True, **result.to_dict()}


@router.post("/recurring/{series_id}/materialize")
async def materialize_series(
    series_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """
    Generate occurrences for a window.

    ## Errors
    - **409 Conflict**: `skip_conflicts` is false and a date conflicts;
      nothing was created
    """
    request = parse_model(MaterializeRequest, payload or {}, InvalidScheduleError)
    result = await service.materialize(series_id, request, actor=x_user_id)
    body = {
        "success": not result.aborted,
        **result.summary(),
        "occurrences": [o.model_dump(mode="json") for o in result.created],
    }
    if result.aborted:
        body["error"] = {
            "code": "MATERIALIZATION_ABORTED",
            "message": "Conflict found; no occurrences were created",
        }
        return JSONResponse(status_code=409, content=body)
    return body


@router.get("/recurring/{series_id}/occurrences")
async def list_occurrences(
    series_id: str,
    status: Optional[OccurrenceStatus] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """List a series' occurrences, ordered by date."""
    result = await service.list_occurrences(series_id, status, from_date, to_date, page, page_size)
    return {"success": True, **result.to_dict()}


@router.put("/recurring/{series_id}/occurrences/{occurrence_number}")
async def update_occurrence(
    series_id: str,
    occurrence_number: int,
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """
    Reschedule or skip one occurrence.

    Send `scheduled_date` and/or `scheduled_time` to reschedule, or
    `{"status": "SKIPPED", "skipped_reason": "..."}` to skip.

    ## Errors
    - **400 Bad Request**: `CANNOT_MODIFY_PAST` for an occurrence dated before
      today, or a new date in the past
    - **409 Conflict**: `INVALID_TRANSITION` when the occurrence was already
      skipped or cancelled, or the new slot conflicts
    """
    update = parse_model(OccurrenceUpdate, payload, InvalidScheduleError)
    occurrence = await service.update_occurrence(series_id, occurrence_number, update, actor=x_user_id)
    return {"success": True, "occurrence": occurrence.model_dump(mode="json")}


@router.post("/recurring/{series_id}/cancel")
async def cancel_series(
    series_id: str,
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """Cancel a series and its future pending/scheduled occurrences."""
    summary = await service.cancel_series(series_id, actor=x_user_id)
    return {"success": True, **summary}


@router.post("/recurring/{series_id}/pause")
async def pause_series(
    series_id: str,
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    series = await service.pause_series(series_id, actor=x_user_id)
    return {"success": True, "series_id": series_id, "status": series.status.value}


@router.post("/recurring/{series_id}/resume")
async def resume_series(
    series_id: str,
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    series = await service.resume_series(series_id, actor=x_user_id)
    return {"success": True, "series_id": series_id, "status": series.status.value}


@router.post("/recurring/{series_id}/complete")
async def complete_series(
    series_id: str,
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    series = await service.complete_series(series_id, actor=x_user_id)
    return {"success": True, "series_id": series_id, "status": series.status.value}


# ============================================================================
# Booking Template Endpoints
# ============================================================================

@router.post("/templates", status_code=201)
async def create_template(
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """Validate and store a booking template; legacy `slots` are stored as `blocks`."""
    template = await service.create_template(payload, actor=x_user_id)
    return {"success": True, "template": template.model_dump(mode="json")}


@router.post("/templates/validate")
async def validate_template(
    payload: Dict[str, Any] = Body(...),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """
    Validate a booking template.

    Legacy `slots` are converted to `blocks` in the response.
    """
    template = await service.validate_template(payload)
    return {
        "success": True,
        "template": template.model_dump(mode="json"),
        "block_count": len(template.blocks),
    }


@router.post("/templates/{template_id}/apply")
async def apply_template(
    template_id: str,
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
    service: RecurringAppointmentService = Depends(get_scheduling_service),
):
    """Apply a stored template to a provider (or clinic-wide) for a date range."""
    request = parse_model(ApplyTemplateRequest, payload, InvalidScheduleError)
    application = await service.apply_template(template_id, request, actor=x_user_id)
    return {"success": True, **application.summary()}


# ============================================================================
# Health Check
# ============================================================================

@router.get("/health")
async def health_check():
    """Health check for the scheduling API."""
    return {"status": "healthy", "service": "scheduling"}
