"""
Withdrawal Authorization Errors

Every failure raised by this package derives from WithdrawAuthError.
Encoding and framing errors are raised while building data, before any
transaction carrying that data is submitted. Transport failures are surfaced
as-is; retry policy belongs to the caller.
"""

from typing import Optional, Sequence, Tuple


class WithdrawAuthError(Exception):
    """Base class for withdrawal authorization failures."""


# =============================================================================
# Encoding
# =============================================================================

class EncodingError(WithdrawAuthError):
    """Raised when a value cannot be canonically encoded."""


class EncodingOverflow(EncodingError):
    """Raised when an integer does not fit its fixed encoding width."""

    def __init__(self, value: int, bits: int):
        self.value = value
        self.bits = bits
        super().__init__(f"{value} does not fit in an unsigned {bits}-bit field")


class InvalidFieldEncoding(EncodingError):
    """Raised when a message field is malformed."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


# =============================================================================
# Instruction framing
# =============================================================================

class FramingError(WithdrawAuthError):
    """Raised when signature verification data cannot be framed or parsed."""


class InvalidEntrySize(FramingError):
    """Raised when a signature entry has a wrong-sized signature or message."""


class TooManySignatures(FramingError):
    """Raised when more entries are supplied than one instruction can carry."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"{count} signature entries exceed the limit of {limit}")


# =============================================================================
# Authorization
# =============================================================================

class AuthorizationError(WithdrawAuthError):
    """Raised when the approval state does not allow the withdrawal."""


class NoApproverConfigured(AuthorizationError):
    """Raised when the coordinating authority lists no approvers."""

    def __init__(self, coordinator: str):
        self.coordinator = coordinator
        super().__init__(f"No approvers configured on coordinator {coordinator}")


class CoordinatorSignatureMismatch(AuthorizationError):
    """Raised when the coordinator signature does not verify for the selected approver."""

    def __init__(self, approver: str):
        self.approver = approver
        super().__init__(f"Coordinator signature does not verify for approver {approver}")


# =============================================================================
# Transport
# =============================================================================

class TransportFailure(WithdrawAuthError):
    """Raised when a ledger request or submission fails."""


class AccountNotFound(TransportFailure):
    """Raised when a required account does not exist on the ledger."""

    def __init__(self, address: str, kind: str = "account"):
        self.address = address
        self.kind = kind
        super().__init__(f"{kind} {address} not found")


class TransactionRejected(TransportFailure):
    """
    Raised when the ledger rejects a transaction.

    The reason and program logs are preserved so callers can classify the
    failure without parsing the exception message.
    """

    def __init__(
        self,
        reason: str,
        logs: Optional[Sequence[str]] = None,
        signature: Optional[str] = None
    ):
        self.reason = reason
        self.logs: Tuple[str, ...] = tuple(logs or ())
        self.signature = signature
        super().__init__(f"Transaction rejected: {reason}")


class ConfirmationTimeout(TransportFailure):
    """Raised when a submitted transaction is not confirmed within the poll budget."""

    def __init__(self, signature: str, polls: int):
        self.signature = signature
        self.polls = polls
        super().__init__(f"Transaction {signature} not confirmed after {polls} polls")


class DuplicateApproval(WithdrawAuthError):
    """
    Raised when an approval submission failed because the approval already exists.

    The orchestrator treats this as success.
    """

    def __init__(self, rejection: TransactionRejected):
        self.rejection = rejection
        super().__init__(f"Approval already recorded: {rejection.reason}")


def classify_rejection(
    rejection: TransactionRejected,
    duplicate_markers: Sequence[str]
) -> WithdrawAuthError:
    """
    Map a rejection to DuplicateApproval when its reason or logs say so.

    Returns the original rejection unchanged otherwise.
    """
    haystack = [rejection.reason, *rejection.logs]
    for marker in duplicate_markers:
        if marker and any(marker in line for line in haystack):
            return DuplicateApproval(rejection)
    return rejection
