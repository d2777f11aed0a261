"""
API routes for the Draft Session Manager.

This module defines all HTTP endpoints with proper dependency injection
and OpenAPI documentation. Domain exceptions propagate to the handlers
registered in app.py, which map them to status codes.
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional
import logging

from src.api.v1.schemas import (
    AppendMessageRequest,
    BatchLoadRequest,
    CreateSessionRequest,
    DeleteSessionResponse,
    ErrorResponse,
    HealthResponse,
    ImportRequest,
    SessionListResponse,
    SessionResponse,
    SweepRequest,
    SweepResponse,
    TransitionRequest,
    UpdateContextRequest,
    UsageRequest,
    WorkflowStateRequest,
)
from src.api.v1.dependencies import (
    SessionServices,
    get_app_settings,
    get_session_manager,
    get_session_services,
    get_sweeper,
    get_synchronizer,
)
from src.config.settings import Settings
from src.domain.session.analytics import SessionAnalytics
from src.domain.session.manager import SessionLifecycleManager
from src.domain.session.models import SessionSnapshot
from src.domain.session.sweeper import ExpirySweeper
from src.domain.session.sync import ClientSyncState, SessionSynchronizer, SyncResponse
from src.shared.clock import utcnow

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()

_ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Session not found"},
    409: {"model": ErrorResponse, "description": "Illegal transition or concurrent modification"},
    503: {"model": ErrorResponse, "description": "Storage unavailable"},
}


# ============================================================================
# Health & Status Endpoints
# ============================================================================


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check",
    description="Check if the API is running and session storage is reachable",
)
async def health_check(
        services: SessionServices = Depends(get_session_services),
        settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    storage_ok = True
    health = getattr(services.gateway, "health_check", None)
    if health is not None:
        storage_ok = await health()

    return HealthResponse(
        status="healthy" if storage_ok else "degraded",
        version=settings.app_version,
        timestamp=utcnow().isoformat(),
        storage_backend=settings.storage_backend,
        storage_ok=storage_ok,
        cached_sessions=len(services.cache),
    )


# ============================================================================
# Session Lifecycle Endpoints
# ============================================================================


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Create session",
    description="Start a new drafting session; the user's oldest active session "
                "is abandoned if they are at their limit",
)
async def create_session(
        request: CreateSessionRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.create_session(
        request.user_id,
        request.context_type,
        request.initial_data,
        session_id=request.session_id,
        title=request.title,
        workflow_state=request.workflow_state,
        metadata=request.metadata,
    )
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/batch",
    response_model=SessionListResponse,
    tags=["Sessions"],
    summary="Load many sessions",
    description="Load several sessions at once; unknown ids are omitted",
)
async def load_sessions(
        request: BatchLoadRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionListResponse:
    sessions = await manager.load_sessions(request.session_ids)
    items = [SessionResponse.from_session(s) for s in sessions.values()]
    return SessionListResponse(sessions=items, count=len(items))


@router.post(
    "/sessions/import",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Import session",
    description="Recreate a session from an exported snapshot under a new id",
)
async def import_session(
        request: ImportRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.import_session(
        request.snapshot, target_user_id=request.target_user_id
    )
    return SessionResponse.from_session(session)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Get session",
)
async def get_session(
        session_id: str,
        include_messages: bool = Query(default=False),
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.load_session(session_id)
    return SessionResponse.from_session(session, include_messages=include_messages)


@router.delete(
    "/sessions/{session_id}",
    response_model=DeleteSessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Delete session",
)
async def delete_session(
        session_id: str,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> DeleteSessionResponse:
    deleted = await manager.delete_session(session_id)
    return DeleteSessionResponse(session_id=session_id, deleted=deleted)


@router.post(
    "/sessions/{session_id}/pause",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Pause session",
)
async def pause_session(
        session_id: str,
        request: Optional[TransitionRequest] = None,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    request = request or TransitionRequest()
    session = await manager.pause_session(session_id, request.reason)
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/resume",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Resume session",
)
async def resume_session(
        session_id: str,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.resume_session(session_id)
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/complete",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Complete session",
)
async def complete_session(
        session_id: str,
        request: Optional[TransitionRequest] = None,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    request = request or TransitionRequest()
    session = await manager.complete_session(session_id, request.data)
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/abandon",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Abandon session",
)
async def abandon_session(
        session_id: str,
        request: Optional[TransitionRequest] = None,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    request = request or TransitionRequest()
    session = await manager.abandon_session(session_id, request.reason)
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/error",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Flag session as failed",
)
async def mark_session_error(
        session_id: str,
        request: Optional[TransitionRequest] = None,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    request = request or TransitionRequest()
    session = await manager.mark_session_error(session_id, request.reason)
    return SessionResponse.from_session(session)


# ============================================================================
# Session Content Endpoints
# ============================================================================


@router.post(
    "/sessions/{session_id}/messages",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Content"],
    summary="Append message",
)
async def append_message(
        session_id: str,
        request: AppendMessageRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.append_message(
        session_id, request.type, request.content, request.metadata
    )
    return SessionResponse.from_session(session)


@router.patch(
    "/sessions/{session_id}/context",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Content"],
    summary="Update context data",
)
async def update_context(
        session_id: str,
        request: UpdateContextRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.update_context(session_id, request.data, merge=request.merge)
    return SessionResponse.from_session(session)


@router.put(
    "/sessions/{session_id}/workflow-state",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Content"],
    summary="Set workflow step",
)
async def set_workflow_state(
        session_id: str,
        request: WorkflowStateRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.set_workflow_state(session_id, request.state)
    return SessionResponse.from_session(session)


@router.post(
    "/sessions/{session_id}/usage",
    response_model=SessionResponse,
    responses=_ERROR_RESPONSES,
    tags=["Content"],
    summary="Record token usage and cost",
)
async def record_usage(
        session_id: str,
        request: UsageRequest,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionResponse:
    session = await manager.record_usage(session_id, request.tokens, request.cost)
    return SessionResponse.from_session(session)


# ============================================================================
# Export / Sync / Analytics Endpoints
# ============================================================================


@router.get(
    "/sessions/{session_id}/export",
    response_model=SessionSnapshot,
    responses=_ERROR_RESPONSES,
    tags=["Portability"],
    summary="Export session snapshot",
)
async def export_session(
        session_id: str,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionSnapshot:
    return await manager.export_session(session_id)


@router.post(
    "/sessions/{session_id}/sync",
    response_model=SyncResponse,
    responses=_ERROR_RESPONSES,
    tags=["Portability"],
    summary="Reconcile client state",
    description="Report whether the client is behind and whether its unsynced "
                "edits conflict with newer server state",
)
async def sync_session(
        session_id: str,
        client_state: Optional[ClientSyncState] = None,
        synchronizer: SessionSynchronizer = Depends(get_synchronizer),
) -> SyncResponse:
    return await synchronizer.reconcile(session_id, client_state)


@router.get(
    "/sessions/{session_id}/analytics",
    response_model=SessionAnalytics,
    responses=_ERROR_RESPONSES,
    tags=["Analytics"],
    summary="Session analytics",
)
async def session_analytics(
        session_id: str,
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionAnalytics:
    return await manager.get_session_analytics(session_id)


@router.get(
    "/users/{user_id}/sessions",
    response_model=SessionListResponse,
    tags=["Sessions"],
    summary="List a user's sessions",
)
async def list_user_sessions(
        user_id: str,
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
        active_only: bool = Query(default=False),
        manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionListResponse:
    if active_only:
        sessions = await manager.list_active_sessions(user_id, limit=limit, offset=offset)
    else:
        sessions = await manager.list_user_sessions(user_id, limit=limit, offset=offset)
    items = [SessionResponse.from_session(s) for s in sessions]
    return SessionListResponse(sessions=items, count=len(items))


# ============================================================================
# Maintenance Endpoints
# ============================================================================


@router.post(
    "/maintenance/sweep",
    response_model=SweepResponse,
    tags=["Maintenance"],
    summary="Abandon idle sessions",
    description="Run one expiry sweep (normally triggered by a scheduler)",
)
async def sweep_sessions(
        request: Optional[SweepRequest] = None,
        sweeper: ExpirySweeper = Depends(get_sweeper),
) -> SweepResponse:
    request = request or SweepRequest()
    abandoned = await sweeper.sweep(request.idle_seconds)
    logger.info(f"Maintenance sweep abandoned {abandoned} sessions")
    return SweepResponse(abandoned=abandoned)
