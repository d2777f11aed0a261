"""
Global constants for the Draft Session Manager.

This module contains all constant values used across the application.
"""

from typing import Final, Dict

# ============================================================================
# API Configuration
# ============================================================================

API_DESCRIPTION: Final[str] = """
Draft Session Manager tracks long-lived AI-assisted course authoring sessions:
lifecycle, persistence, caching, multi-device synchronization and expiry.
"""

# ============================================================================
# Lifecycle States
# ============================================================================

STATE_ACTIVE: Final[str] = "active"
STATE_PAUSED: Final[str] = "paused"
STATE_COMPLETED: Final[str] = "completed"
STATE_ABANDONED: Final[str] = "abandoned"
STATE_ERROR: Final[str] = "error"

# ============================================================================
# Message Types
# ============================================================================

MESSAGE_TYPE_USER: Final[str] = "user"
MESSAGE_TYPE_ASSISTANT: Final[str] = "assistant"
MESSAGE_TYPE_SYSTEM: Final[str] = "system"

# ============================================================================
# Session Defaults
# ============================================================================

DEFAULT_CONTEXT_TYPE: Final[str] = "course_creation"
DEFAULT_WORKFLOW_STATE: Final[str] = "initial"
SESSION_ID_PREFIX: Final[str] = "session_"

MAX_ACTIVE_SESSIONS_PER_USER: Final[int] = 5
SESSION_CACHE_TTL_SECONDS: Final[int] = 900  # 15 minutes
SESSION_IDLE_THRESHOLD_SECONDS: Final[int] = 3600  # 1 hour
MAX_MESSAGE_HISTORY: Final[int] = 1000
SYNC_RECENT_MESSAGES: Final[int] = 10

LIMIT_EXCEEDED_REASON: Final[str] = "limit exceeded"
IDLE_TIMEOUT_REASON: Final[str] = "idle timeout"

# Workflow step -> progress, used when the caller moves the workflow forward.
WORKFLOW_PROGRESS: Final[Dict[str, float]] = {
    "initial": 0.0,
    "welcome": 0.0,
    "template_selection": 0.10,
    "requirements_gathering": 0.20,
    "structure_generation": 0.35,
    "structure_review": 0.45,
    "content_generation": 0.60,
    "content_review": 0.75,
    "final_review": 0.90,
    "course_creation": 0.95,
    "completed": 1.0,
    "complete": 1.0,
}

# ============================================================================
# Export / Sync
# ============================================================================

EXPORT_VERSION: Final[str] = "1.0"

RESOLUTION_USE_SERVER: Final[str] = "use_server"
RESOLUTION_USE_CLIENT: Final[str] = "use_client"
RESOLUTION_MERGE: Final[str] = "merge"

CONFLICT_RESOLUTION_OPTIONS: Final[Dict[str, str]] = {
    RESOLUTION_USE_SERVER: "Use server version (recommended)",
    RESOLUTION_USE_CLIENT: "Use your local changes",
    RESOLUTION_MERGE: "Try to merge changes",
}

# ============================================================================
# Analytics Weights
# ============================================================================

ENGAGEMENT_FREQUENCY_WEIGHT: Final[float] = 0.4
ENGAGEMENT_PROGRESS_WEIGHT: Final[float] = 0.6

COMPLETION_PROGRESS_WEIGHT: Final[float] = 0.5
COMPLETION_ENGAGEMENT_WEIGHT: Final[float] = 0.3
COMPLETION_TRANSITIONS_WEIGHT: Final[float] = 0.2
COMPLETION_TRANSITIONS_SATURATION: Final[int] = 10

# ============================================================================
# Logging
# ============================================================================

LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# ============================================================================
# Database
# ============================================================================

SESSIONS_TABLE: Final[str] = "draft_sessions"
