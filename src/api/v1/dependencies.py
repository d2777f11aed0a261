"""
FastAPI dependency injection providers.

This module provides all dependencies needed by API endpoints,
following dependency injection principles for testability and flexibility.
"""

from dataclasses import dataclass
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from src.config.settings import Settings, get_settings
from src.domain.session.cache import SessionCache
from src.domain.session.manager import SessionLifecycleManager
from src.domain.session.storage.base import SessionGateway
from src.domain.session.storage.memory import InMemorySessionGateway
from src.domain.session.sweeper import ExpirySweeper
from src.domain.session.sync import SessionSynchronizer
from src.shared.exceptions import ConfigurationError

import logging

logger = logging.getLogger(__name__)


# ============================================================================
# Settings Dependency
# ============================================================================


def get_app_settings() -> Settings:
    """
    Get application settings.

    Returns:
        Settings instance (cached)
    """
    return get_settings()


# ============================================================================
# Session Services (initialized at startup)
# ============================================================================


@dataclass
class SessionServices:
    """Long-lived session components shared by every request."""

    gateway: SessionGateway
    cache: SessionCache
    manager: SessionLifecycleManager
    synchronizer: SessionSynchronizer
    sweeper: ExpirySweeper


_services: Optional[SessionServices] = None


async def build_gateway(settings: Settings) -> SessionGateway:
    """
    Create the configured storage backend.

    Raises:
        ConfigurationError: If the backend cannot be initialized
    """
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory session storage; data is lost on restart")
        return InMemorySessionGateway()

    from src.infrastructure.database.connection import get_db_manager
    from src.infrastructure.database.repository import PostgresSessionGateway

    gateway = PostgresSessionGateway(get_db_manager(settings))
    await gateway.initialize_schema()
    return gateway


async def initialize_session_services(settings: Settings) -> SessionServices:
    """
    Build the gateway, cache, manager, synchronizer and sweeper.

    This should be called in the FastAPI lifespan event.

    Args:
        settings: Application settings

    Returns:
        Initialized SessionServices
    """
    global _services

    if _services is not None:
        logger.warning("Session services already initialized")
        return _services

    logger.info(f"Initializing session services ({settings.storage_backend} backend)...")

    gateway = await build_gateway(settings)
    cache = SessionCache(
        ttl_seconds=settings.session_cache_ttl_seconds,
        max_entries=settings.session_cache_max_entries,
    )
    manager = SessionLifecycleManager(
        gateway,
        cache,
        max_active_sessions_per_user=settings.session_max_active_per_user,
        optimistic_locking=settings.session_optimistic_locking,
    )

    _services = SessionServices(
        gateway=gateway,
        cache=cache,
        manager=manager,
        synchronizer=SessionSynchronizer(
            manager, recent_message_count=settings.sync_recent_messages
        ),
        sweeper=ExpirySweeper(
            gateway, cache, idle_threshold_seconds=settings.session_idle_threshold_seconds
        ),
    )
    logger.info("Session services initialized")
    return _services


async def cleanup_session_services() -> None:
    """
    Release session services at application shutdown.

    This should be called in the FastAPI lifespan event.
    """
    global _services

    if _services is None:
        return

    logger.info("Cleaning up session services...")
    _services.cache.close()
    _services = None

    from src.infrastructure.database.connection import close_db_manager
    close_db_manager()
    logger.info("Session services cleanup completed")


def get_session_services() -> SessionServices:
    """
    Get initialized session services.

    Raises:
        ConfigurationError: If services are not initialized
    """
    if _services is None:
        raise ConfigurationError(
            "Session services not initialized. Ensure initialize_session_services() "
            "was called at startup."
        )
    return _services


def get_session_manager() -> SessionLifecycleManager:
    return get_session_services().manager


def get_synchronizer() -> SessionSynchronizer:
    return get_session_services().synchronizer


def get_sweeper() -> ExpirySweeper:
    return get_session_services().sweeper


# ============================================================================
# Lifespan Context Manager
# ============================================================================


@asynccontextmanager
async def lifespan_manager(settings: Settings) -> AsyncGenerator[None, None]:
    """
    Manage application lifespan (startup/shutdown).

    This context manager handles:
    - Session service initialization at startup
    - Cache and connection pool cleanup at shutdown

    Args:
        settings: Application settings

    Yields:
        None
    """
    # Startup
    logger.info("Application startup: Initializing resources...")
    try:
        await initialize_session_services(settings)
        logger.info("✓ Application startup completed")
        yield
    finally:
        # Shutdown
        logger.info("Application shutdown: Cleaning up resources...")
        await cleanup_session_services()
        logger.info("✓ Application shutdown completed")
