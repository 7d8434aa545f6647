from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from analytics import HealthAnalytics
from config import Settings, get_logger, get_settings, setup_logging
from crud import COLLECTIONS, EntityStore
from database import make_engine, make_session_factory
from identifiers import IdentifierGenerator, IdentifierRangeExhausted
from importer import BulkImportPipeline, CSVParseError, ImportStateError
from schemas import EnrollmentRequest, ErrorResponse, HealthRecordCreate, SuccessResponse
from seed import build_seed_data
from storage import PersistenceAdapter, SessionStorage

logger = get_logger(__name__)

API_VERSION = "1.0.0"

# URL segment -> collection name, e.g. health-records -> health_records
ROUTE_COLLECTIONS = {name.replace("_", "-"): name for name in COLLECTIONS}

# Routes are declared async so they run one at a time on the event loop;
# the store assumes a single writer.
router = APIRouter()


class Services:
    """Everything the routes need, built once per application."""

    def __init__(self, settings: Settings, session_factory: sessionmaker):
        self.settings = settings
        self.storage = SessionStorage(session_factory)
        self.persistence = PersistenceAdapter(self.storage, prefix=settings.storage_prefix)
        seed_data = build_seed_data(settings.seed) if settings.seed_on_empty else None
        self.store = EntityStore(self.persistence, IdentifierGenerator(), seed=seed_data)
        self.store.flush()
        self.analytics = HealthAnalytics(self.store, settings.checkup_window_months)
        self.importer = BulkImportPipeline(self.store)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        engine = make_engine(settings.database_url)
        return cls(settings, make_session_factory(engine))


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="School Health Records",
        description="""In-process API over the school health record store.

        Features:
        - Student enrollment, search and emergency lookup
        - Health checkups, vaccinations, vision tests and alerts
        - Bulk CSV import with per-row error reports
        - Health statistics for the dashboard
        """,
        version=API_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = services

    @app.on_event("startup")
    async def startup_event():
        settings = get_settings()
        setup_logging(settings.log_level)
        if app.state.services is None:
            app.state.services = Services.from_settings(settings)
        logger.info(
            "School health records API starting (%s), %d students loaded",
            settings.environment, len(app.state.services.store.students),
        )

    register_exception_handlers(app)
    app.include_router(router)
    return app


# ========== DEPENDENCIES ==========

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> EntityStore:
    return services.store


def get_analytics(services: Services = Depends(get_services)) -> HealthAnalytics:
    return services.analytics


def get_importer(services: Services = Depends(get_services)) -> BulkImportPipeline:
    return services.importer


def collection_name(collection: str) -> str:
    try:
        return ROUTE_COLLECTIONS[collection]
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown collection: {collection}")


def records(items) -> List[Dict[str, Any]]:
    return [item.to_record() for item in items]


# ========== SYSTEM ==========

@router.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "School Health Records API",
        "version": API_VERSION,
        "documentation": "/api/docs",
        "health_check": "/api/health",
    }


@router.get("/api/health")
async def health_check(services: Services = Depends(get_services)):
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
        "collections": {name: len(repo) for name, repo in services.store.repositories.items()},
        "importStage": services.importer.stage.value,
    }


# ========== STUDENT ENDPOINTS ==========

@router.post("/api/students/enroll", status_code=status.HTTP_201_CREATED)
async def enroll_student(request: EnrollmentRequest, store: EntityStore = Depends(get_store)):
    """Validate and create a student with contacts, conditions and allergies"""
    result = store.enroll_student(request)
    if not result.valid:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="Student record is invalid",
                code="VALIDATION_ERROR",
                details={"errors": records(result.errors)},
            ).model_dump(),
        )
    return result.record.to_record()


@router.get("/api/students/search")
async def search_students(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    store: EntityStore = Depends(get_store),
):
    """Search students by name, roll number or student code"""
    return records(store.search_students(q, limit))


@router.get("/api/students/{student_id}/emergency-profile")
async def emergency_profile(student_id: str, store: EntityStore = Depends(get_store)):
    profile = store.emergency_profile(student_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return {
        "student": profile["student"].to_record(),
        "bloodGroup": profile["blood_group"].value,
        "activeConditions": records(profile["active_conditions"]),
        "allergies": records(profile["allergies"]),
        "emergencyContacts": records(profile["emergency_contacts"]),
    }


@router.get("/api/students/{student_id}/alerts")
async def student_alerts(student_id: str, store: EntityStore = Depends(get_store)):
    """Alerts aimed at the student or at all students"""
    if store.get_student(student_id) is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return records(store.get_alerts_for_student(student_id))


# ========== HEALTH RECORD ENDPOINTS ==========

@router.post("/api/health-records/checkup", status_code=status.HTTP_201_CREATED)
async def record_checkup(checkup: HealthRecordCreate, store: EntityStore = Depends(get_store)):
    """Record a checkup; BMI and category are derived from height and weight"""
    if store.get_student(checkup.student_id) is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return store.record_checkup(checkup).to_record()


# ========== ALERT & MESSAGE ENDPOINTS ==========

@router.post("/api/alerts/broadcast", status_code=status.HTTP_201_CREATED)
async def broadcast_alert(data: Dict[str, Any] = Body(...), store: EntityStore = Depends(get_store)):
    return store.broadcast_alert(data).to_record()


@router.post("/api/alerts/{alert_id}/read")
async def mark_alert_read(alert_id: str, store: EntityStore = Depends(get_store)):
    alert = store.mark_alert_read(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert.to_record()


@router.post("/api/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: str, store: EntityStore = Depends(get_store)):
    alert = store.resolve_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert.to_record()


@router.get("/api/messages/inbox/{user_id}")
async def inbox(user_id: str, unread_only: bool = Query(False, alias="unreadOnly"),
                store: EntityStore = Depends(get_store)):
    return records(store.get_inbox(user_id, unread_only))


@router.get("/api/messages/conversation")
async def conversation(user_a: str, user_b: str, store: EntityStore = Depends(get_store)):
    return records(store.get_conversation(user_a, user_b))


@router.post("/api/messages/{message_id}/read")
async def mark_message_read(message_id: str, store: EntityStore = Depends(get_store)):
    message = store.mark_message_read(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return message.to_record()


# ========== BLOOD REQUEST & APPOINTMENT ENDPOINTS ==========

@router.post("/api/blood-requests/{request_id}/fulfil")
async def fulfil_blood_request(request_id: str, store: EntityStore = Depends(get_store)):
    request = store.fulfil_blood_request(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Blood request not found")
    return request.to_record()


@router.get("/api/appointments/today")
async def today_appointments(store: EntityStore = Depends(get_store)):
    return records(store.get_today_appointments())


@router.get("/api/appointments/doctor/{doctor_id}")
async def doctor_appointments(doctor_id: str, store: EntityStore = Depends(get_store)):
    return records(store.get_appointments_by_doctor(doctor_id))


# ========== BULK IMPORT ENDPOINTS ==========

@router.post("/api/import/students")
async def upload_students_csv(request: Request, importer: BulkImportPipeline = Depends(get_importer)):
    """Upload a CSV body; it is parsed and validated, nothing is committed yet"""
    content = await request.body()
    importer.reset()
    summary = importer.load(content)
    return {
        "stage": importer.stage.value,
        "summary": summary.to_record(),
        "errors": records(importer.errors),
    }


@router.post("/api/import/commit")
async def commit_import(importer: BulkImportPipeline = Depends(get_importer)):
    return importer.commit().to_record()


@router.get("/api/import/status")
async def import_status(importer: BulkImportPipeline = Depends(get_importer)):
    return {
        "stage": importer.stage.value,
        "summary": importer.summary().to_record(),
        "progress": importer.progress.to_record(),
    }


@router.get("/api/import/errors.csv", response_class=PlainTextResponse)
async def import_error_report(importer: BulkImportPipeline = Depends(get_importer)):
    return PlainTextResponse(
        importer.error_report_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=import_errors.csv"},
    )


@router.get("/api/import/template", response_class=PlainTextResponse)
async def import_template():
    return PlainTextResponse(
        BulkImportPipeline.template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=student_import_template.csv"},
    )


@router.post("/api/import/reset")
async def reset_import(importer: BulkImportPipeline = Depends(get_importer)):
    importer.reset()
    return SuccessResponse(message="Import reset").model_dump()


# ========== ANALYTICS ENDPOINTS ==========

@router.get("/api/analytics/dashboard")
async def dashboard(analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.dashboard().to_record()


@router.get("/api/analytics/bmi")
async def bmi_distribution(latest_only: bool = Query(False, alias="latestOnly"),
                           analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.bmi_distribution(latest_only=latest_only)


@router.get("/api/analytics/vaccinations")
async def vaccination_compliance(analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.vaccination_compliance().to_record()


@router.get("/api/analytics/vaccinations/overdue")
async def overdue_vaccinations(analytics: HealthAnalytics = Depends(get_analytics)):
    return records(analytics.overdue_vaccinations())


@router.get("/api/analytics/blood-groups")
async def blood_groups(analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.blood_group_distribution()


@router.get("/api/analytics/pending-checkups")
async def pending_checkups(
    window_months: Optional[int] = Query(None, alias="windowMonths", ge=0),
    analytics: HealthAnalytics = Depends(get_analytics),
):
    return records(analytics.pending_checkups(window_months=window_months))


@router.get("/api/analytics/vision")
async def vision_results(analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.vision_test_distribution()


@router.get("/api/analytics/blood-requests")
async def blood_request_summary(analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.blood_request_summary()


@router.get("/api/analytics/classes")
async def class_distribution(analytics: HealthAnalytics = Depends(get_analytics)):
    return analytics.class_distribution()


# ========== COLLECTION ENDPOINTS ==========

@router.get("/api/{collection}")
async def list_records(
    collection: str,
    student_id: Optional[str] = Query(None, alias="studentId"),
    store: EntityStore = Depends(get_store),
):
    """List a collection, optionally only the records of one student"""
    name = collection_name(collection)
    repo = store.collection(name)
    if student_id is None:
        return records(repo)
    if name == "alerts":
        return records(store.get_alerts_for_student(student_id))
    if "student_id" not in repo.model.model_fields:
        raise HTTPException(status_code=400, detail=f"{collection} are not linked to students")
    return records(repo.query(lambda r: r.student_id == student_id))


@router.get("/api/{collection}/{record_id}")
async def get_record(collection: str, record_id: str, store: EntityStore = Depends(get_store)):
    record = store.collection(collection_name(collection)).get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record.to_record()


@router.post("/api/{collection}", status_code=status.HTTP_201_CREATED)
async def create_record(collection: str, data: Dict[str, Any] = Body(...),
                        store: EntityStore = Depends(get_store)):
    """Create a record; id and timestamps are assigned by the store"""
    name = collection_name(collection)
    if name == "students":
        raise HTTPException(status_code=400, detail="Use /api/students/enroll to add students")
    return store.create(name, data).to_record()


@router.patch("/api/{collection}/{record_id}")
async def update_record(collection: str, record_id: str, data: Dict[str, Any] = Body(...),
                        store: EntityStore = Depends(get_store)):
    record = store.update(collection_name(collection), record_id, data)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record.to_record()


@router.delete("/api/{collection}/{record_id}")
async def delete_record(collection: str, record_id: str, store: EntityStore = Depends(get_store)):
    """Delete a record; deleting a student also deletes every record that references it"""
    if not store.remove(collection_name(collection), record_id):
        raise HTTPException(status_code=404, detail="Record not found")
    return SuccessResponse(message=f"Deleted {record_id}").model_dump()


# ========== ERROR HANDLERS ==========

def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=str(exc.detail),
                code=HTTPStatus(exc.status_code).name,
                details={"path": request.url.path},
            ).model_dump(),
        )

    @app.exception_handler(CSVParseError)
    async def csv_parse_error_handler(request, exc):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error=str(exc), code="CSV_PARSE_ERROR").model_dump(),
        )

    @app.exception_handler(ImportStateError)
    async def import_state_error_handler(request, exc):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ErrorResponse(error=str(exc), code="IMPORT_STATE_ERROR").model_dump(),
        )

    @app.exception_handler(IdentifierRangeExhausted)
    async def identifier_range_handler(request, exc):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ErrorResponse(error=str(exc), code="IDENTIFIERS_EXHAUSTED").model_dump(),
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or "record", "message": err["msg"]}
            for err in exc.errors(include_url=False, include_context=False, include_input=False)
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="Record is invalid", code="VALIDATION_ERROR", details={"errors": errors},
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                code="INTERNAL_ERROR",
                details={"message": str(exc)},
            ).model_dump(),
        )


app = create_app()


# ========== MAIN EXECUTION ==========

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().environment == "development",
        log_level=get_settings().log_level.lower(),
    )
