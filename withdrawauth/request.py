"""
Withdrawal request data.

WithdrawRequest is the part shared by both approvals and sent to the
withdrawal program; WithdrawalParameters is everything the caller supplies
for one withdrawal attempt.
"""

from dataclasses import dataclass
from typing import Any, Dict

from .addresses import Address
from .errors import InvalidFieldEncoding, InvalidEntrySize
from .ed25519_program import SIGNATURE_SIZE
from .messages import SALT_SIZE

U64_MAX = (1 << 64) - 1
I64_MAX = (1 << 63) - 1


def _check_uint(name: str, value: Any, maximum: int):
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFieldEncoding(name, "must be an integer")
    if value < 0 or value > maximum:
        raise InvalidFieldEncoding(name, f"must be between 0 and {maximum}")


@dataclass(frozen=True)
class WithdrawRequest:
    """
    Withdrawal amount, coordinator signature expiry and coordinator salt.

    The expiry travels to the program as a signed 64-bit timestamp, so it is
    bounded by the signed range even though it hashes as uint64.
    """
    amount: int
    expires_at: int
    coordinator_salt: bytes

    def __post_init__(self):
        _check_uint("amount", self.amount, U64_MAX)
        _check_uint("expires_at", self.expires_at, I64_MAX)
        if isinstance(self.coordinator_salt, str):
            raise InvalidFieldEncoding("coordinator_salt", "expected bytes, got str")
        salt = bytes(self.coordinator_salt)
        if len(salt) != SALT_SIZE:
            raise InvalidFieldEncoding(
                "coordinator_salt", f"must be {SALT_SIZE} bytes, got {len(salt)}"
            )
        object.__setattr__(self, "coordinator_salt", salt)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "expires_at": self.expires_at,
            "coordinator_salt": self.coordinator_salt.hex(),
        }


@dataclass(frozen=True)
class WithdrawalParameters:
    """
    Inputs for one withdrawal, as issued by the external signing service.

    collateral is the collateral account; deposit_address owns the token
    account funds are drawn from.
    """
    collateral: Address
    deposit_address: Address
    recipient: Address
    asset: Address
    request: WithdrawRequest
    coordinator_signature: bytes

    def __post_init__(self):
        for name in ("collateral", "deposit_address", "recipient", "asset"):
            object.__setattr__(self, name, Address.parse(getattr(self, name)))
        if len(self.coordinator_signature) != SIGNATURE_SIZE:
            raise InvalidEntrySize(
                f"Coordinator signature must be {SIGNATURE_SIZE} bytes, "
                f"got {len(self.coordinator_signature)}"
            )
        object.__setattr__(self, "coordinator_signature", bytes(self.coordinator_signature))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collateral": str(self.collateral),
            "deposit_address": str(self.deposit_address),
            "recipient": str(self.recipient),
            "asset": str(self.asset),
            "request": self.request.to_dict(),
            "coordinator_signature": self.coordinator_signature.hex(),
        }
