"""
FastAPI application factory.

Creates and configures the FastAPI application with:
- OpenAPI documentation
- CORS middleware
- Scheduling routes
- Error handlers that render domain errors as {"success": false, "error": {...}}
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import scheduling_routes
from .exceptions import (
    CannotModifyPastError,
    DuplicateBookingError,
    InvalidDateSpecError,
    InvalidOccurrenceTransitionError,
    InvalidRecurrenceSpecError,
    InvalidScheduleError,
    NotFoundError,
    OverlapError,
    SchedulingError,
    SeriesNotActiveError,
)
from .services.recurring_appointment_service import RecurringAppointmentService
from .startup import lifespan

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidRecurrenceSpecError, 400),
    (InvalidDateSpecError, 400),
    (InvalidScheduleError, 400),
    (CannotModifyPastError, 400),
    (OverlapError, 409),
    (DuplicateBookingError, 409),
    (InvalidOccurrenceTransitionError, 409),
    (SeriesNotActiveError, 409),
)


def status_for(error: SchedulingError) -> int:
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(error, error_cls):
            return status_code
    return 400


def create_openapi_schema(app: FastAPI):
    """Generate custom OpenAPI schema with tag descriptions."""
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        from fastapi.openapi.utils import get_openapi

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema["tags"] = [
            {"name": "scheduling", "description": "Recurring appointments, availability and templates"},
        ]

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    return custom_openapi


def configure_cors(app: FastAPI):
    """Configure CORS middleware for the scheduling frontend."""
    origins = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


def configure_error_handlers(app: FastAPI):
    """Render domain and request validation errors in one JSON shape."""
    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        status_code = status_for(exc)
        if status_code >= 409:
            logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "error": exc.to_dict()},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        violations = [
            {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": f"Invalid request ({len(violations)} violation(s))",
                    "details": {"violations": violations},
                },
            },
        )


def create_app(service: Optional[RecurringAppointmentService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Scheduling service to serve; routes fall back to an
            in-memory store when omitted

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Orthodontic Scheduling Service",
        description="""
Recurring appointment and availability engine for orthodontic clinics.

## Features
- Recurrence previews (daily, weekly, biweekly, monthly, custom)
- Provider availability with slot grids
- Conflict detection
- Recurring series materialization
- Booking templates
""",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.openapi = create_openapi_schema(app)

    configure_cors(app)
    configure_error_handlers(app)

    app.include_router(scheduling_routes.router)
    if service is not None:
        app.state.scheduling_service = service
        app.dependency_overrides[scheduling_routes.get_scheduling_service] = lambda: service

    return app
