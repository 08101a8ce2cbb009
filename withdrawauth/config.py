"""
Configuration module for withdrawauth.

Process settings are read from the environment; the settings a withdrawal
depends on are gathered into an immutable AuthorizationConfig that is passed
to the orchestrator at construction time.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .addresses import Address
from .ed25519_program import MAX_SIGNATURES

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("WITHDRAWAUTH_ENV", "dev")  # dev|stage|prod

LOG_LEVEL = os.getenv("WITHDRAWAUTH_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("WITHDRAWAUTH_LOG_JSON", "true").lower() in ("1", "true", "yes")

# Rejection text that means the approval record already holds the signer:
# the system program refusing to re-create the record, or the program's own
# duplicate-signature error.
DEFAULT_DUPLICATE_MARKERS = ("already in use", "SignatureAlreadySubmitted")

DEFAULT_CONFIRMATION_POLLS = 30
DEFAULT_POLL_INTERVAL_SECONDS = 1.0


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AuthorizationConfig:
    """Settings for one deployment of the withdrawal program."""
    program_id: Address
    max_signatures: int = MAX_SIGNATURES
    max_confirmation_polls: int = DEFAULT_CONFIRMATION_POLLS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    verify_coordinator_signature: bool = True
    duplicate_approval_markers: Tuple[str, ...] = field(default=DEFAULT_DUPLICATE_MARKERS)
    withdraw_submission_variant: int = 0

    def __post_init__(self):
        object.__setattr__(self, "program_id", Address.parse(self.program_id))
        object.__setattr__(self, "duplicate_approval_markers", tuple(self.duplicate_approval_markers))
        if not 1 <= self.max_signatures <= MAX_SIGNATURES:
            raise ValueError(f"max_signatures must be between 1 and {MAX_SIGNATURES}")
        if self.max_confirmation_polls < 1:
            raise ValueError("max_confirmation_polls must be at least 1")
        if self.poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must not be negative")
        if not 0 <= self.withdraw_submission_variant <= 255:
            raise ValueError("withdraw_submission_variant must fit in one byte")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AuthorizationConfig':
        """
        Build configuration from WITHDRAWAUTH_* variables.

        Raises:
            ValueError: WITHDRAWAUTH_PROGRAM_ID is missing or a value is malformed
            InvalidFieldEncoding: the program id is not a 32-byte base58 address
        """
        env = os.environ if environ is None else environ

        program_id = env.get("WITHDRAWAUTH_PROGRAM_ID", "")
        if not program_id:
            raise ValueError("WITHDRAWAUTH_PROGRAM_ID is required")

        markers = env.get("WITHDRAWAUTH_DUPLICATE_MARKERS")
        if markers is None:
            duplicate_markers = DEFAULT_DUPLICATE_MARKERS
        else:
            duplicate_markers = tuple(m.strip() for m in markers.split(",") if m.strip())

        return cls(
            program_id=Address.from_base58(program_id),
            max_signatures=int(env.get("WITHDRAWAUTH_MAX_SIGNATURES", MAX_SIGNATURES)),
            max_confirmation_polls=int(env.get("WITHDRAWAUTH_CONFIRM_POLLS", DEFAULT_CONFIRMATION_POLLS)),
            poll_interval_seconds=float(env.get("WITHDRAWAUTH_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS)),
            verify_coordinator_signature=_env_bool(env.get("WITHDRAWAUTH_VERIFY_COORDINATOR", "true")),
            duplicate_approval_markers=duplicate_markers,
            withdraw_submission_variant=int(env.get("WITHDRAWAUTH_SUBMISSION_VARIANT", "0")),
        )


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("WITHDRAWAUTH_DEBUG", "").lower() in ("1", "true", "yes")
