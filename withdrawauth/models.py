"""
Input models for files and service responses.

SigningServiceResponse mirrors the JSON returned by the withdrawal signature
service:

    {
      "expiresAt": "2025-11-13T20:39:31.000Z",
      "parameters": [collateral, asset, amount, recipient,
                     expiry_unix_seconds, salt, signature_base64]
    }

The salt arrives either as a base64 string or as an array of byte values.
"""

import base64
import binascii
from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .addresses import Address
from .ed25519_program import SignatureEntry
from .request import WithdrawRequest, WithdrawalParameters

PARAMETER_COUNT = 7


def _decode_base64(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"{name} is not valid base64") from e


def _decode_hex(value: str, name: str) -> bytes:
    try:
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    except ValueError as e:
        raise ValueError(f"{name} is not valid hex") from e


def _decode_salt(value: Union[str, List[int]]) -> bytes:
    if isinstance(value, str):
        return _decode_base64(value, "salt")
    if any(not 0 <= b <= 255 for b in value):
        raise ValueError("salt byte values must be between 0 and 255")
    return bytes(value)


class SigningServiceResponse(BaseModel):
    expiresAt: datetime
    parameters: List[Any]

    @field_validator("parameters")
    @classmethod
    def _check_parameters(cls, value: List[Any]) -> List[Any]:
        if len(value) != PARAMETER_COUNT:
            raise ValueError(f"expected {PARAMETER_COUNT} parameters, got {len(value)}")
        return value

    def to_withdrawal_parameters(self, deposit_address: Optional[Union[Address, str]] = None) -> WithdrawalParameters:
        """
        Decode into WithdrawalParameters.

        The deposit address is not part of the response; it defaults to the
        collateral address.
        """
        collateral, asset, amount, recipient, expires_at, salt, signature = self.parameters
        return WithdrawalParameters(
            collateral=collateral,
            deposit_address=deposit_address if deposit_address is not None else collateral,
            recipient=recipient,
            asset=asset,
            request=WithdrawRequest(
                amount=int(amount),
                expires_at=int(expires_at),
                coordinator_salt=_decode_salt(salt),
            ),
            coordinator_signature=_decode_base64(signature, "signature"),
        )


class DigestRequest(BaseModel):
    """Input of `withdrawauth digest`."""
    kind: str = Field(default="custody", pattern="^(custody|coordinator)$")
    collateral: str
    sender: str
    recipient: str
    asset: str
    amount: int = Field(ge=0)
    nonce: int = Field(ge=0)
    salt: str
    coordinator: Optional[str] = None
    expires_at: int = Field(default=0, ge=0)
    program_id: Optional[str] = None

    def salt_bytes(self) -> bytes:
        return _decode_hex(self.salt, "salt")


class SignatureEntryModel(BaseModel):
    """One entry of `withdrawauth frame` input; binary fields are hex."""
    signer: str
    signature: str
    message: str

    def to_entry(self) -> SignatureEntry:
        return SignatureEntry(
            signer=Address.from_base58(self.signer),
            signature=_decode_hex(self.signature, "signature"),
            message=_decode_hex(self.message, "message"),
        )


class FrameRequest(BaseModel):
    entries: List[SignatureEntryModel] = Field(default_factory=list)
