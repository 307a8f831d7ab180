"""API dependencies."""

import logging
import secrets
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from agrilease.config import Environment, settings
from agrilease.db import base as db_base
from agrilease.engine import AgriLeaseEngine
from agrilease.events.dispatcher import EventDispatcher, get_event_dispatcher
from agrilease.integrations.uploads import get_document_uploader
from agrilease.models import DocumentUploader, RequestContext, UserRole

logger = logging.getLogger("agrilease.api")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with db_base.async_session_factory() as session:
        yield session


def get_dispatcher() -> EventDispatcher:
    return get_event_dispatcher()


def get_uploader() -> DocumentUploader:
    return get_document_uploader()


async def get_engine(
    session: AsyncSession = Depends(get_db_session),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    uploader: DocumentUploader = Depends(get_uploader),
) -> AsyncGenerator[AgriLeaseEngine, None]:
    """
    One engine per request.

    Mutating routes commit explicitly so commit failures still reach the
    client; anything uncommitted is rolled back and its side effects dropped.
    """
    engine = AgriLeaseEngine(session, dispatcher=dispatcher, uploader=uploader)
    try:
        yield engine
    except Exception:
        await engine.rollback()
        raise
    if engine.outbox.pending:
        await engine.rollback()


def _parse_role(value: str) -> UserRole:
    try:
        return UserRole(value.strip().lower())
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown role: {value}")


async def get_request_context(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_active_role: Optional[str] = Header(None, alias="X-Active-Role"),
    x_user_roles: Optional[str] = Header(None, alias="X-User-Roles"),
    x_user_phone: Optional[str] = Header(None, alias="X-User-Phone"),
) -> RequestContext:
    """
    Build the caller's identity from headers set by the upstream gateway.

    No X-User-Id means an anonymous caller. The active role is also
    counted among the caller's roles.
    """
    if not x_user_id:
        return RequestContext.anonymous()

    active_role = _parse_role(x_active_role) if x_active_role else None
    roles = {_parse_role(r) for r in (x_user_roles or "").split(",") if r.strip()}
    if active_role is not None:
        roles.add(active_role)

    return RequestContext(
        user_id=x_user_id,
        active_role=active_role,
        roles=frozenset(roles),
        phone=x_user_phone,
    )


def _insecure_dev_active() -> bool:
    return settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT


def _presented_key(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return x_api_key or None


async def verify_api_key(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    """
    Check the service key the upstream gateway attaches to every call.

    Caller identity comes from the X-User-* headers; this key only proves
    the request came through the gateway. With no key configured outside
    insecure dev mode every request is refused with 503.
    """
    if _insecure_dev_active():
        return

    presented = _presented_key(authorization, x_api_key)
    if presented is None:
        raise HTTPException(
            status_code=401,
            detail="Service key required (Authorization: Bearer <key> or X-API-Key)",
        )

    if not settings.api_key:
        logger.error("Rejecting request: AGRILEASE_API_KEY is not configured")
        raise HTTPException(status_code=503, detail="Service key not configured")

    if not secrets.compare_digest(presented, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid service key")


def validate_auth_config() -> None:
    """
    Refuse to start with an unusable key setup.

    Raises:
        RuntimeError: insecure dev mode outside development, or no key
            configured while insecure dev mode is off
    """
    env = settings.env.value
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"AGRILEASE_ALLOW_INSECURE_DEV is only permitted in development, not {env}"
        )
    if not settings.allow_insecure_dev and not settings.api_key:
        raise RuntimeError(f"AGRILEASE_API_KEY must be set to serve {env} traffic")

    if settings.allow_insecure_dev:
        logger.warning(
            "Insecure dev mode: service key checks are off. "
            "Never enable AGRILEASE_ALLOW_INSECURE_DEV outside a developer machine."
        )
    else:
        logger.info(f"Service key checks enabled ({env})")
