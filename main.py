import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from config import Settings, get_settings
from database import (
    DuplicateRecord,
    InMemoryRecordStore,
    MongoRecordStore,
    RecordNotFound,
    RecordStore,
    RecordStoreError,
)
from mailer import InMemoryMailer, MailDeliveryError, Mailer, SmtpMailer, meeting_message, welcome_message
from schemas import (
    Card,
    DeselectRequest,
    FeedbackSubmission,
    RegisterRequest,
    ScheduleMeetingRequest,
    SelectRequest,
)

logger = logging.getLogger(__name__)

STORE_ERRORS = (RecordStoreError, PyMongoError)

# -----------------------------
# Errors
# -----------------------------

class ApiError(Exception):
    """Terminal request error rendered with an endpoint-specific JSON body."""

    def __init__(self, status_code: int, payload: Dict[str, Any]):
        super().__init__(payload)
        self.status_code = status_code
        self.payload = payload


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.payload)

# -----------------------------
# Dependencies & Bootstrapping
# -----------------------------

def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def build_store(settings: Settings) -> RecordStore:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.warning("DATABASE_URL not set, using in-memory record store")
        return InMemoryRecordStore()
    return MongoRecordStore.from_url(settings.database_url, settings.database_name)


def build_mailer(settings: Settings) -> Mailer:
    if settings.use_in_memory_backends or not settings.smtp_host:
        logger.warning("SMTP_HOST not set, outgoing mail is kept in memory")
        return InMemoryMailer()
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout,
        sender=settings.mail_from,
    )


DEFAULT_CARDS = [
    {
        "id": "card-1",
        "title": "Workshops",
        "content": "Hands-on sessions run by members every other week.",
        "image": "/images/workshops.jpg",
        "alt": "Members at a workshop",
    },
    {
        "id": "card-2",
        "title": "Hackathons",
        "content": "Weekend builds with teams from across departments.",
        "image": "/images/hackathons.jpg",
        "alt": "Team coding at a hackathon",
    },
    {
        "id": "card-3",
        "title": "Talks",
        "content": "Guest speakers from industry and research.",
        "image": "/images/talks.jpg",
        "alt": "Speaker on stage",
    },
]


def ensure_seed_data(store: RecordStore) -> None:
    """Ensure the default cards exist in the store"""
    if store.count_cards() > 0:
        return
    for c in DEFAULT_CARDS:
        store.create_card(Card(**c).model_dump())
    logger.info("Seeded %d cards", len(DEFAULT_CARDS))

# -----------------------------
# Routes: service
# -----------------------------

service_router = APIRouter()


@service_router.get("/")
def root():
    return {"message": "Club Membership Backend Running"}


@service_router.get("/test")
def test_database(request: Request, store: RecordStore = Depends(get_store)):
    settings: Settings = request.app.state.settings
    response = {
        "backend": "✅ Running",
        "database": store.kind,
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": settings.database_name or None,
        "collections": [],
    }
    try:
        response["collections"] = store.collection_names()
    except STORE_ERRORS as e:
        response["database"] = f"⚠️ Error: {str(e)[:80]}"
    return response

# -----------------------------
# Routes: feedback
# -----------------------------

feedback_router = APIRouter()


@feedback_router.post("/submit-feedback", status_code=201)
def submit_feedback(payload: Optional[FeedbackSubmission] = None, store: RecordStore = Depends(get_store)):
    doc = (payload or FeedbackSubmission()).model_dump()
    try:
        store.create_feedback(doc)
    except STORE_ERRORS:
        logger.exception("Error submitting feedback")
        raise ApiError(500, {"message": "Internal server error"})
    logger.info("Feedback data: %s", doc)
    return {"message": "Feedback submitted successfully"}

# -----------------------------
# Routes: registration & selection
# -----------------------------

registration_router = APIRouter()


@registration_router.get("/get-likes/{card_id}")
def get_likes(card_id: str, store: RecordStore = Depends(get_store)):
    try:
        card = store.get_card(card_id)
    except STORE_ERRORS:
        logger.exception("Error fetching likes for card %s", card_id)
        raise ApiError(500, {"error": "Internal server error"})
    if card is None:
        raise ApiError(404, {"error": "Card not found"})
    return {"likes": card.get("likes", 0)}


@registration_router.post("/like-card/{card_id}")
def like_card(card_id: str, store: RecordStore = Depends(get_store)):
    try:
        likes = store.increment_card_likes(card_id)
    except STORE_ERRORS:
        logger.exception("Error liking card %s", card_id)
        raise ApiError(500, {"error": "Internal server error"})
    if likes is None:
        raise ApiError(404, {"error": "Card not found"})
    return {"likes": likes}


@registration_router.post("/api/register", status_code=201)
def register(
    payload: Optional[RegisterRequest] = None,
    store: RecordStore = Depends(get_store),
    mailer: Mailer = Depends(get_mailer),
):
    """Store a new applicant and send the welcome mail. A failed send does not undo the registration."""
    payload = payload or RegisterRequest()
    try:
        if store.find_applicant_by_uid(payload.uid) is not None:
            raise DuplicateRecord(payload.uid)
        store.create_applicant(payload.model_dump())
        logger.info("Registered applicant uid=%s", payload.uid)
        subject, body = welcome_message(payload.name)
        mailer.send(payload.email, subject, body)
    except DuplicateRecord:
        raise ApiError(400, {"message": "UID already registered"})
    except STORE_ERRORS + (MailDeliveryError,):
        logger.exception("Error registering uid=%s", payload.uid)
        raise ApiError(500, {"message": "Internal server error"})
    return {"message": "User registered successfully"}


@registration_router.get("/api/users")
def list_users(store: RecordStore = Depends(get_store)) -> List[Dict[str, Any]]:
    try:
        return store.list_applicants()
    except STORE_ERRORS:
        logger.exception("Error listing users")
        raise ApiError(500, {"message": "Internal server error"})


@registration_router.post("/api/schedule-meeting")
def schedule_meeting(
    payload: Optional[ScheduleMeetingRequest] = None,
    store: RecordStore = Depends(get_store),
    mailer: Mailer = Depends(get_mailer),
):
    payload = payload or ScheduleMeetingRequest()
    if not payload.userId:
        raise ApiError(404, {"message": "User not found"})
    try:
        user = store.update_applicant(
            payload.userId,
            {"scheduleMeeting": True, "meetingDate": payload.date, "meetingTime": payload.time},
        )
        if user is None:
            raise ApiError(404, {"message": "User not found"})
        subject, body = meeting_message(user.get("name"), payload.date, payload.time)
        mailer.send(user.get("email"), subject, body)
    except STORE_ERRORS + (MailDeliveryError,) as e:
        logger.exception("Error scheduling meeting for %s", payload.userId)
        raise ApiError(500, {"message": "Error scheduling meeting", "error": str(e)})
    return {"message": "Meeting scheduled and email sent successfully"}


@registration_router.patch("/api/select-user/{user_id}")
def select_user(user_id: str, payload: Optional[SelectRequest] = None, store: RecordStore = Depends(get_store)):
    payload = payload or SelectRequest()
    if not payload.selected:
        raise ApiError(400, {"message": "Nothing to update: selected must be true"})
    try:
        user = store.update_applicant(user_id, {"selected": True})
    except STORE_ERRORS as e:
        logger.exception("Error selecting user %s", user_id)
        raise ApiError(500, {"message": "Error selecting user", "error": str(e)})
    if user is None:
        raise ApiError(404, {"message": "User not found"})
    return {"message": "User selected successfully"}


@registration_router.post("/api/deselect-user/{user_id}")
def deselect_user(user_id: str, payload: Optional[DeselectRequest] = None, store: RecordStore = Depends(get_store)):
    payload = payload or DeselectRequest()
    try:
        store.archive_and_delete_applicant(user_id, payload.reason)
    except RecordNotFound:
        raise ApiError(404, {"message": "User not found"})
    except STORE_ERRORS:
        logger.exception("Error deselecting user %s", user_id)
        raise ApiError(500, {"message": "Internal server error"})
    logger.info("Deselected user %s", user_id)
    return {"message": "User deselected successfully"}

# -----------------------------
# App
# -----------------------------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = store if store is not None else build_store(settings)
    mailer = mailer if mailer is not None else build_mailer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(store, MongoRecordStore):
            store.ensure_indexes()
        if settings.seed_cards:
            ensure_seed_data(store)
        logger.info("%s started with %s store", settings.app_name, store.kind)
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.mailer = mailer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ApiError, api_error_handler)

    app.include_router(service_router)
    app.include_router(feedback_router)
    app.include_router(registration_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
