"""Session lifecycle routes."""

from __future__ import annotations

from dataclasses import asdict
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cookies import CookieManager
from app.core.fingerprint import DeviceInfo
from app.core.request_meta import extract_client_ip
from app.core.sessions import (
    INTERNAL_ERROR,
    SessionData,
    SessionManager,
    get_session_manager,
)
from app.core.tokens import SessionTokenService, get_session_token_service
from app.dependencies import (
    get_cookie_manager,
    get_database_session,
    require_service_key,
    require_session,
)
from app.error_handlers import error_response
from app.models.audit_event import AuditActorType
from app.schemas.session import (
    CreateSessionRequest,
    CreateSessionResponse,
    RefreshSessionResponse,
    SessionStatusResponse,
    SessionTokenResponse,
    SessionVerificationResponse,
    SessionView,
)
from app.services.audit_service import AuditService, get_audit_service
from app.services.device_control import DeviceControlService, get_device_control_service
from app.services.session_validator import SessionValidator, get_session_validator

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session_view(session: SessionData) -> SessionView:
    """Project stored session data for clients."""
    return SessionView(
        id=session.id,
        user_id=session.user_id,
        role=session.role,
        device_id=session.device_id,
        expires_at=session.expires_at,
    )


def _extract_bearer_token(request: Request) -> str | None:
    """Extract bearer token from Authorization header."""
    authorization = request.headers.get("authorization", "").strip()
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    cleaned = token.strip()
    return cleaned or None


def _json_with_cookies(content: dict, cookies: CookieManager, status_code: int = 200) -> JSONResponse:
    """Build a JSON response carrying staged cookie mutations."""
    response = JSONResponse(status_code=status_code, content=content)
    cookies.apply_to(response)
    return response


@router.get("/session", response_model=SessionStatusResponse)
async def get_session_status(
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    cookies: Annotated[CookieManager, Depends(get_cookie_manager)],
    session_manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> JSONResponse:
    """Report whether the session cookie names a live session."""
    result = await session_manager.validate_session(db_session, cookies)
    if result.valid and result.session is not None:
        payload = SessionStatusResponse(
            valid=True,
            session=_session_view(result.session),
            role=result.session.role,
        )
    else:
        payload = SessionStatusResponse(valid=False)
    return _json_with_cookies(payload.model_dump(mode="json"), cookies)


@router.post(
    "/session/create",
    response_model=CreateSessionResponse,
    status_code=201,
    dependencies=[Depends(require_service_key)],
)
async def create_session(
    payload: CreateSessionRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    cookies: Annotated[CookieManager, Depends(get_cookie_manager)],
    session_manager: Annotated[SessionManager, Depends(get_session_manager)],
    device_control: Annotated[DeviceControlService, Depends(get_device_control_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> JSONResponse:
    """Register the caller's device and open a session for it in one commit.

    A failed session insert rolls the registration back too, so a takeover
    never evicts the old device without a replacement session.
    """
    ip_address = payload.ip_address or extract_client_ip(request)
    user_agent = payload.user_agent or request.headers.get("user-agent")
    registration = await device_control.register_device_for_user(
        db_session,
        user_id=payload.user_id,
        role=payload.role,
        device_info=DeviceInfo(
            user_agent=user_agent,
            platform=payload.platform,
            ip_address=ip_address,
            location=payload.location,
            language=payload.language,
        ),
        device_id=payload.device_id,
        tenant_id=payload.tenant_id,
        commit=False,
    )
    if not registration.success:
        await audit_service.record(
            db=db_session,
            event_type="session.create.failure",
            actor_type=AuditActorType.SERVICE,
            success=False,
            request=request,
            target_id=payload.user_id,
            target_type="user",
            failure_reason="device_registration_failed",
            device_id=registration.new_device_id,
        )
        return error_response(status_code=500, detail=registration.message, code=INTERNAL_ERROR)

    created = await session_manager.create_session(
        db_session,
        cookies,
        user_id=payload.user_id,
        role=payload.role,
        device_fingerprint=registration.new_device_id,
        ip_address=ip_address,
        user_agent=user_agent,
        tenant_id=payload.tenant_id,
    )
    if not created.success or created.expires_at is None:
        await audit_service.record(
            db=db_session,
            event_type="session.create.failure",
            actor_type=AuditActorType.SERVICE,
            success=False,
            request=request,
            target_id=payload.user_id,
            target_type="user",
            failure_reason=created.code,
            device_id=registration.new_device_id,
        )
        return error_response(
            status_code=500,
            detail=created.error or "Failed to create session",
            code=created.code or INTERNAL_ERROR,
        )

    await audit_service.record(
        db=db_session,
        event_type="session.created",
        actor_type=AuditActorType.SERVICE,
        success=True,
        request=request,
        target_id=payload.user_id,
        target_type="user",
        device_id=registration.new_device_id,
        metadata={
            "role": payload.role.value,
            "previous_device_id": registration.previous_device_id,
        },
    )
    body = CreateSessionResponse(
        session_id=created.session_id,
        device_id=registration.new_device_id,
        expires_at=created.expires_at,
        previous_device_id=registration.previous_device_id,
        message=registration.message,
    )
    return _json_with_cookies(body.model_dump(mode="json"), cookies, status_code=201)


@router.post("/session/refresh", response_model=RefreshSessionResponse)
async def refresh_session(
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    cookies: Annotated[CookieManager, Depends(get_cookie_manager)],
    session_manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> JSONResponse:
    """Rotate the refresh cookie into a new session."""
    result = await session_manager.refresh_session(db_session, cookies)
    if not result.success or result.session is None:
        status_code = 503 if result.code == INTERNAL_ERROR else 401
        response = error_response(
            status_code=status_code,
            detail=result.error or "Not authenticated.",
            code=result.code or "invalid_session",
        )
        cookies.apply_to(response)
        return response

    body = RefreshSessionResponse(
        session_id=result.new_session_id,
        expires_at=result.session.expires_at,
    )
    return _json_with_cookies(body.model_dump(mode="json"), cookies)


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    cookies: Annotated[CookieManager, Depends(get_cookie_manager)],
    session_manager: Annotated[SessionManager, Depends(get_session_manager)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> Response:
    """Revoke the current session; succeeds without a session too."""
    session = await session_manager.get_session_data(db_session, cookies)
    await session_manager.revoke_session(db_session, cookies)
    if session is not None:
        await audit_service.record(
            db=db_session,
            event_type="session.revoked",
            actor_type=AuditActorType.USER,
            success=True,
            request=request,
            actor_id=session.user_id,
            target_id=session.id,
            target_type="session",
            device_id=session.device_id,
        )
    response = Response(status_code=204)
    cookies.apply_to(response)
    return response


@router.post("/session/token", response_model=SessionTokenResponse)
async def issue_session_token(
    session: Annotated[SessionData, Depends(require_session)],
    token_service: Annotated[SessionTokenService, Depends(get_session_token_service)],
) -> SessionTokenResponse:
    """Issue a short-lived bearer token bound to the session and its device."""
    remaining = int((session.expires_at - datetime.now(UTC)).total_seconds())
    token = token_service.issue(
        user_id=session.user_id,
        role=session.role,
        session_id=session.id,
        device_id=session.device_id,
        not_after=session.expires_at,
    )
    return SessionTokenResponse(
        access_token=token,
        expires_in=max(0, min(token_service.ttl_seconds, remaining)),
    )


@router.get("/session/verify", response_model=SessionVerificationResponse)
async def verify_session_token(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    validator: Annotated[SessionValidator, Depends(get_session_validator)],
    x_device_id: Annotated[str | None, Header(alias="X-Device-ID")] = None,
) -> SessionVerificationResponse:
    """Check a bearer token against session and device state."""
    validation = await validator.validate(db_session, _extract_bearer_token(request), x_device_id)
    return SessionVerificationResponse(**asdict(validation))
