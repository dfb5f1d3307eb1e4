"""
Admin authentication module.
Single shared admin password, session-based authentication.
The session token travels in a signed cookie issued at login; session state
lives in the SessionGate's store.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from pydantic import BaseModel

from .config import LOGIN_RATE_LIMIT
from .errors import AuthenticationError, NotLoggedInError
from .limiter import client_ip, limiter
from .sessions import SessionGate, SessionState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])

SESSION_COOKIE_NAME = "wg_session"


class LoginRequest(BaseModel):
    # Left untyped: a non-string password is a failed login, not a 422.
    password: Any = None


def _gate(request: Request) -> SessionGate:
    return request.app.state.gate


def _read_token(request: Request) -> Optional[str]:
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        return None

    serializer: URLSafeTimedSerializer = request.app.state.serializer
    try:
        return serializer.loads(cookie, max_age=request.app.state.settings.session_max_age)
    except BadSignature:
        # Also covers SignatureExpired
        logger.debug("Ignoring invalid or expired session cookie")
        return None


def _set_cookie(request: Request, response: Response, session: SessionState):
    settings = request.app.state.settings
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=request.app.state.serializer.dumps(session.token),
        max_age=settings.session_max_age,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


async def get_session(request: Request) -> SessionState:
    """Dependency: the caller's session, anonymous until it logs in."""
    return await _gate(request).open(_read_token(request))


async def require_auth(request: Request, session: SessionState = Depends(get_session)) -> SessionState:
    """Dependency guarding every administrative route."""
    if not _gate(request).is_authenticated(session):
        raise NotLoggedInError()
    return session


@router.get("")
async def get_session_status(request: Request, session: SessionState = Depends(get_session)):
    """Whether a password is required and whether this session has passed it."""
    return _gate(request).status(session)


@router.post("", status_code=204)
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    session: SessionState = Depends(get_session),
):
    """Log in with the admin password."""
    audit = request.app.state.audit
    ip = client_ip(request)
    try:
        session = await _gate(request).login(session, body.password)
    except AuthenticationError:
        audit.log_admin_login(success=False, ip=ip)
        raise

    audit.log_admin_login(success=True, ip=ip)
    _set_cookie(request, response, session)


@router.delete("", status_code=204)
async def logout(request: Request, response: Response, session: SessionState = Depends(require_auth)):
    """Destroy the session. Its token is never accepted again."""
    await _gate(request).logout(session)
    request.app.state.audit.log_admin_logout(ip=client_ip(request))
    response.delete_cookie(SESSION_COOKIE_NAME)
