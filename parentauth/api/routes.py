from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from parentauth.api.schemas import (
    AccountResponse,
    AuthResponse,
    Envelope,
    ProfileUpdateRequest,
    SessionInfoResponse,
    SessionResponse,
    SignupCompleteRequest,
    SignupStartRequest,
    SignupStartResponse,
    TokenRefreshRequest,
)
from parentauth.logging import get_logger
from parentauth.service.auth import AuthContext
from parentauth.service.email_validation import normalize_email
from parentauth.service.errors import (
    ExpiredCodeError,
    InvalidCodeError,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
    ThrottledError,
    ValidationError,
)
from parentauth.service.runtime import get_runtime

logger = get_logger(__name__)

# Routes are sync; FastAPI runs them in its threadpool so blocking redis
# calls never stall the event loop.
router = APIRouter(prefix="/v1")

_CODE_TO_STATUS = {
    cls.error_code: cls.status_code
    for cls in (
        ValidationError,
        InvalidCodeError,
        ExpiredCodeError,
        NotFoundError,
        ThrottledError,
        ServiceUnavailableError,
    )
}


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _result_error(error_code: Optional[str], message: Optional[str]) -> HTTPException:
    code = error_code or ServiceError.error_code
    return _http_error(code, message or "request failed", _CODE_TO_STATUS.get(code, 400))


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    ctx = runtime.auth.authenticate(_bearer_token(authorization))
    if not ctx:
        raise _http_error("unauthorized", "invalid session", status_code=401)
    return ctx


@router.post("/auth/signup/start", response_model=Envelope, tags=["auth"])
def signup_start(body: SignupStartRequest):
    """Send a one-time code to the parent's email.

    The code itself is only echoed back when the service runs in test mode.
    """
    runtime = get_runtime()
    result = runtime.auth.start_signup(body.email)
    if not result.success:
        raise _result_error(result.error_code, result.error)
    return Envelope(
        status="ok",
        data=SignupStartResponse(
            email=normalize_email(body.email),
            expires_at=result.expires_at,
            code=result.code,
        ),
    )


@router.post("/auth/signup/complete", response_model=Envelope, tags=["auth"])
def signup_complete(body: SignupCompleteRequest):
    runtime = get_runtime()
    result = runtime.auth.complete_signup(
        body.email, body.code, device_signals=body.device
    )
    if not result.success:
        raise _result_error(result.error_code, result.error)
    return Envelope(
        status="ok",
        data=AuthResponse(
            session=SessionResponse.from_session(result.session),
            account=AccountResponse.from_account(result.account),
        ),
    )


@router.get("/auth/session", response_model=Envelope, tags=["auth"])
def current_session(principal: AuthContext = Depends(get_user)):
    return Envelope(status="ok", data=SessionInfoResponse.from_context(principal))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
def refresh_tokens(body: TokenRefreshRequest):
    runtime = get_runtime()
    session = runtime.auth.refresh_session(body.refresh_token)
    if session is None:
        raise _http_error("unauthorized", "invalid refresh", status_code=401)
    account = runtime.auth.get_account(session.account_id)
    return Envelope(
        status="ok",
        data=AuthResponse(
            session=SessionResponse.from_session(session),
            account=AccountResponse.from_account(account) if account else None,
        ),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
def logout(authorization: Optional[str] = Header(None)):
    """Revoke the bearer session. Unknown or missing tokens still succeed."""
    runtime = get_runtime()
    result = runtime.auth.sign_out(_bearer_token(authorization))
    if not result.success:
        raise _result_error(result.error_code, result.error)
    return Envelope(status="ok", data={"status": "signed_out"})


@router.get("/me", response_model=Envelope, tags=["profile"])
def get_current_parent(principal: AuthContext = Depends(get_user)):
    if principal.account is None:
        raise _http_error("not_found", "Parent not found", status_code=404)
    return Envelope(status="ok", data=AccountResponse.from_account(principal.account))


@router.patch("/me", response_model=Envelope, tags=["profile"])
def update_current_parent(
    body: ProfileUpdateRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    account = runtime.profiles.update_profile(principal.account_id, name=body.name)
    return Envelope(status="ok", data=AccountResponse.from_account(account))
