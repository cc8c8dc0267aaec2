import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security.utils import get_authorization_scheme_param
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import labbook.models as models
from labbook.auth import AuthGateway
from labbook.availability import ensure_lab
from labbook.bookings import BookingFilter, BookingManager
from labbook.clock import to_utc_naive
from labbook.config import Settings
from labbook.database import Base, make_engine, make_session_factory
from labbook.errors import Forbidden, LabBookingError
from labbook.inbox import InboxService
from labbook.notifications import Notifier, notifier_from_settings
from labbook.schemas import (
    AvailabilityRequest, BookingCreate, BookingUpdate, ChangePasswordRequest, LoginRequest,
    RegisterRequest, SendOtpRequest, UserCreate, UserUpdate, booking_to_dict,
    notification_to_dict, user_to_dict,
)
from labbook.security import Principal, TokenService
from labbook.users import UserService

logger = logging.getLogger(__name__)

router = APIRouter()

# -------------------- Bearer token --------------------
def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Credential from the Authorization header, None when nothing was sent.

    A header in any other form than `Bearer <token>` is passed on unchanged
    and fails verification as a malformed token.
    """
    if authorization is None or not authorization.strip():
        return None
    scheme, param = get_authorization_scheme_param(authorization.strip())
    if scheme.lower() == "bearer":
        return param.strip() or None
    return authorization.strip()

# -------------------- Dependencies --------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request):
    db = request.app.state.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_current_user(request: Request, token: Optional[str] = Depends(bearer_token)) -> Principal:
    claims = request.app.state.tokens.verify(token)
    principal = Principal.from_claims(claims)
    request.state.user = principal
    return principal


def admin_only(user: Principal = Depends(get_current_user)) -> Principal:
    if not user.is_admin:
        raise Forbidden("Access denied. You're not an admin.")
    return user


def get_auth(request: Request, db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)) -> AuthGateway:
    return AuthGateway(db, request.app.state.tokens, notifier, request.app.state.settings)


def get_bookings(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> BookingManager:
    return BookingManager(db, settings)


# -------------------- ROOT --------------------
@router.get("/")
def root():
    return {"status": "ok"}

# ==================== AUTH ====================
@router.post("/auth/login")
def login(payload: LoginRequest, auth: AuthGateway = Depends(get_auth)):
    token, user = auth.login(payload.email, payload.password)
    return {"token": token, "user": user_to_dict(user)}


@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, auth: AuthGateway = Depends(get_auth)):
    token, user = auth.register(payload.first_name, payload.last_name, payload.email, payload.password)
    return {"token": token, "user": user_to_dict(user)}


@router.post("/auth/send-otp")
def send_otp(payload: SendOtpRequest, auth: AuthGateway = Depends(get_auth)):
    auth.request_password_reset(payload.email)
    return {"message": "OTP sent"}


@router.post("/auth/change-password")
def change_password(payload: ChangePasswordRequest, auth: AuthGateway = Depends(get_auth)):
    auth.confirm_password_reset(payload.email, payload.otp, payload.new_password)
    return {"message": "Password changed successfully"}

# ==================== USERS ====================
@router.get("/users/me")
def get_me(user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return user_to_dict(UserService(db).get(user.user_id))


@router.get("/users")
def list_users(role: Optional[str] = None, admin: Principal = Depends(admin_only), db: Session = Depends(get_db)):
    return [user_to_dict(u) for u in UserService(db).list(role)]


@router.post("/users", status_code=201)
def add_user(payload: UserCreate, admin: Principal = Depends(admin_only), db: Session = Depends(get_db)):
    user = UserService(db).create(payload.first_name, payload.last_name, payload.email, payload.password, payload.role)
    return user_to_dict(user)


@router.get("/users/{user_id}")
def get_user(user_id: int, admin: Principal = Depends(admin_only), db: Session = Depends(get_db)):
    return user_to_dict(UserService(db).get(user_id))


@router.put("/users/{user_id}")
def update_user(user_id: int, payload: UserUpdate, admin: Principal = Depends(admin_only), db: Session = Depends(get_db)):
    user = UserService(db).update(user_id, **payload.model_dump(exclude_unset=True))
    return user_to_dict(user)


@router.delete("/users/{user_id}")
def delete_user(user_id: int, admin: Principal = Depends(admin_only), db: Session = Depends(get_db)):
    UserService(db).delete(user_id)
    return {"message": "User deleted successfully"}

# ==================== LABS ====================
@router.get("/labs")
def list_labs(user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return [{"id": lab.id, "name": lab.name} for lab in db.query(models.Lab).order_by(models.Lab.id).all()]

# ==================== BOOKINGS ====================
@router.post("/bookings/check-availability")
def check_availability(payload: AvailabilityRequest, user: Principal = Depends(get_current_user),
                       bookings: BookingManager = Depends(get_bookings)):
    bookings.require_booking_role(user)
    result = bookings.check_availability(payload.start_time, payload.end_time, payload.lab_id, payload.exclude_booking_id)
    return {"available": result.available, "conflicts": [booking_to_dict(b) for b in result.conflicts]}


@router.post("/bookings", status_code=201)
def create_booking(payload: BookingCreate, user: Principal = Depends(get_current_user),
                   bookings: BookingManager = Depends(get_bookings)):
    return booking_to_dict(bookings.create(payload, user))


@router.get("/bookings")
def list_bookings(
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    owner_id: Optional[int] = Query(None, alias="ownerId"),
    include_cancelled: bool = Query(False, alias="includeCancelled"),
    user: Principal = Depends(get_current_user),
    bookings: BookingManager = Depends(get_bookings),
):
    flt = BookingFilter(
        start=to_utc_naive(start) if start else None,
        end=to_utc_naive(end) if end else None,
        owner_id=owner_id,
        include_cancelled=include_cancelled,
    )
    found = bookings.list(flt)
    return {"bookings": [booking_to_dict(b) for b in found], "count": len(found)}


@router.get("/bookings/upcoming")
def upcoming_bookings(limit: int = Query(10, ge=1, le=100), user: Principal = Depends(get_current_user),
                      bookings: BookingManager = Depends(get_bookings)):
    return [booking_to_dict(b) for b in bookings.upcoming(limit)]


@router.get("/bookings/stats")
def booking_stats(user: Principal = Depends(get_current_user), bookings: BookingManager = Depends(get_bookings)):
    return bookings.stats()


@router.get("/bookings/{booking_id}")
def get_booking(booking_id: int, user: Principal = Depends(get_current_user),
                bookings: BookingManager = Depends(get_bookings)):
    return booking_to_dict(bookings.get(booking_id))


@router.put("/bookings/{booking_id}")
def update_booking(booking_id: int, payload: BookingUpdate, user: Principal = Depends(get_current_user),
                   bookings: BookingManager = Depends(get_bookings)):
    return booking_to_dict(bookings.reschedule(booking_id, payload, user))


@router.patch("/bookings/{booking_id}/cancel")
def cancel_booking(booking_id: int, user: Principal = Depends(get_current_user),
                   bookings: BookingManager = Depends(get_bookings)):
    return booking_to_dict(bookings.cancel(booking_id, user))

# ==================== NOTIFICATIONS ====================
@router.get("/notifications")
def list_notifications(unread: bool = False, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return [notification_to_dict(n) for n in InboxService(db).list(user, unread_only=unread)]


@router.put("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return notification_to_dict(InboxService(db).mark_read(notification_id, user))


@router.post("/notifications/{notification_id}/accept")
def accept_invitation(notification_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return notification_to_dict(InboxService(db).respond(notification_id, user, accept=True))


@router.post("/notifications/{notification_id}/reject")
def reject_invitation(notification_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return notification_to_dict(InboxService(db).respond(notification_id, user, accept=False))

# -------------------- Error handlers --------------------
async def handle_app_error(request: Request, exc: LabBookingError):
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": errors})


async def handle_store_error(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Something went wrong!"})

# -------------------- FastAPI App --------------------
def create_app(settings: Optional[Settings] = None, notifier: Optional[Notifier] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = make_engine(settings.database_url)
    SessionLocal = make_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            ensure_lab(db, settings.default_lab_name)
        finally:
            db.close()
        yield
        engine.dispose()

    app = FastAPI(title="Lab Booking API", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.SessionLocal = SessionLocal
    app.state.tokens = TokenService(
        settings.jwt_secret,
        settings.jwt_algorithm,
        timedelta(minutes=settings.access_token_ttl_minutes),
    )
    app.state.notifier = notifier or notifier_from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LabBookingError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(SQLAlchemyError, handle_store_error)
    app.include_router(router)
    return app
