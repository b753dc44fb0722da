"""HTTP route definitions for the authentication service."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from pydantic import BaseModel

from ..domain.contracts import LoginInput, SignupInput
from ..domain.errors import AuthError, AuthErrorKind
from ..domain.service import AuthEngine
from ..notifications.mailer import SmtpVerificationNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

AUTH_REQUESTS = Counter(
    "auth_requests_total",
    "Authentication requests by operation and outcome.",
    ["operation", "outcome"],
)

_STATUS_BY_KIND: dict[AuthErrorKind, int] = {
    AuthErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    AuthErrorKind.INVALID_TOKEN: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.EXPIRED_TOKEN: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.ACCOUNT_NOT_ACTIVATED: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
}


class SignupRequest(BaseModel):
    """Signup payload; blank or missing fields are rejected by the engine."""

    username: str | None = None
    display_name: str | None = None
    email: str | None = None
    phone: str | None = None
    password: str | None = None


class SignupResponse(BaseModel):
    username: str
    email: str
    message: str


class VerifyResponse(BaseModel):
    success: bool = True
    message: str


class LoginRequest(BaseModel):
    username_or_email: str | None = None
    password: str | None = None


class LoginResponse(BaseModel):
    """Session credential returned after a successful login."""

    token: str
    token_type: str = "bearer"
    username: str
    email: str
    message: str


def get_engine(request: Request) -> AuthEngine:
    """Resolve the `AuthEngine` stored on the FastAPI application state."""
    engine: AuthEngine = request.app.state.auth_engine
    return engine


def get_notifier(request: Request) -> SmtpVerificationNotifier:
    notifier: SmtpVerificationNotifier = request.app.state.notifier
    return notifier


def auth_error_response(exc: AuthError) -> JSONResponse:
    """Render an `AuthError` as a JSON body with its kind and message."""
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        content={"detail": exc.message, "kind": exc.kind.value},
    )


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, engine: AuthEngine = Depends(get_engine)) -> SignupResponse:
    """Register an account and send its verification link."""
    try:
        result = engine.signup(
            SignupInput(
                username=payload.username,
                display_name=payload.display_name,
                email=payload.email,
                phone=payload.phone,
                password=payload.password,
            )
        )
    except AuthError as exc:
        AUTH_REQUESTS.labels("signup", exc.kind.value).inc()
        raise
    AUTH_REQUESTS.labels("signup", "success").inc()
    return SignupResponse(username=result.username, email=result.email, message=result.message)


@router.get("/verify", response_model=VerifyResponse)
def verify_email(
    token: str | None = Query(default=None),
    engine: AuthEngine = Depends(get_engine),
) -> VerifyResponse:
    """Consume a verification token and activate the owning account."""
    try:
        result = engine.verify_email(token)
    except AuthError as exc:
        AUTH_REQUESTS.labels("verify", exc.kind.value).inc()
        raise
    AUTH_REQUESTS.labels("verify", "already_verified" if result.already_verified else "success").inc()
    return VerifyResponse(message=result.message)


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, engine: AuthEngine = Depends(get_engine)) -> LoginResponse:
    """Authenticate by username or email and return a session token."""
    try:
        result = engine.login(
            LoginInput(username_or_email=payload.username_or_email, password=payload.password)
        )
    except AuthError as exc:
        AUTH_REQUESTS.labels("login", exc.kind.value).inc()
        raise
    AUTH_REQUESTS.labels("login", "success").inc()
    return LoginResponse(
        token=result.session_token,
        username=result.username,
        email=result.email,
        message=result.message,
    )


@router.get("/debug/email-config")
def email_config(
    request: Request, notifier: SmtpVerificationNotifier = Depends(get_notifier)
) -> dict[str, Any]:
    """Expose the masked mail configuration when debug endpoints are enabled."""
    _require_debug(request)
    return notifier.describe()


@router.post("/debug/test-email")
def send_test_email(
    request: Request,
    to: str | None = Query(default=None),
    notifier: SmtpVerificationNotifier = Depends(get_notifier),
) -> JSONResponse:
    """Send a plain test message through the configured SMTP relay."""
    _require_debug(request)
    recipient = to or notifier.describe()["sender"]
    error = notifier.send_test_message(recipient)
    if error is not None:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "recipient": recipient, "detail": error},
        )
    return JSONResponse(content={"success": True, "recipient": recipient, "detail": "test email sent"})


def _require_debug(request: Request) -> None:
    if not getattr(request.app.state, "debug_endpoints", False):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


def install_error_handlers(app: FastAPI) -> None:
    """Map business errors to their HTTP status and hide unexpected failures."""

    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.kind.value)
        return auth_error_response(exc)

    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unexpected error handling %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An unexpected error occurred. Please try again later."},
        )

    app.add_exception_handler(AuthError, handle_auth_error)
    app.add_exception_handler(Exception, handle_unexpected)
