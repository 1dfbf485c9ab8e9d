"""Core relay components for DeskRelay."""

from .api_gateway import DeskApiGateway
from .bulk_job_controller import BulkJobController, EventEmitter
from .config_loader import (
    clear_config_cache,
    get_desk_config,
    get_job_runtime_config,
    get_logging_config,
    get_profiles_path,
    load_config,
    load_config_or_defaults,
    resolve_config_path,
)
from .errors import AuthError, CriticalError, DeskRelayError, RemoteError, ValidationError
from .job_registry import Job, JobConfig, JobRegistry
from .profile_store import Profile, ProfileStore
from .ticket_flow import TicketResult, VerificationOutcome, create_ticket, verify_ticket_email
from .token_cache import CachedToken, TokenCache

__all__ = [
    "AuthError",
    "BulkJobController",
    "CachedToken",
    "CriticalError",
    "DeskApiGateway",
    "DeskRelayError",
    "EventEmitter",
    "Job",
    "JobConfig",
    "JobRegistry",
    "Profile",
    "ProfileStore",
    "RemoteError",
    "TicketResult",
    "TokenCache",
    "ValidationError",
    "VerificationOutcome",
    "clear_config_cache",
    "create_ticket",
    "get_desk_config",
    "get_job_runtime_config",
    "get_logging_config",
    "get_profiles_path",
    "load_config",
    "load_config_or_defaults",
    "resolve_config_path",
    "verify_ticket_email",
]
