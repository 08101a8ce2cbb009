"""
Withdrawal program instructions.

Instruction data follows the Anchor convention: an 8-byte discriminator,
sha256("global:<instruction name>")[:8], followed by Borsh-encoded arguments
(little-endian integers, u32-length-prefixed vectors, one-byte enum tags).
"""

import hashlib
import struct
from typing import Sequence

from .addresses import (
    INSTRUCTIONS_SYSVAR_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    Address,
)
from .errors import InvalidFieldEncoding
from .messages import SALT_SIZE
from .request import WithdrawRequest
from .transaction import AccountMeta, Instruction

SUBMIT_SIGNATURES = "submit_signatures"
WITHDRAW_COLLATERAL_ASSET = "withdraw_collateral_asset"


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode('utf-8')).digest()[:8]


def encode_withdraw_request(request: WithdrawRequest) -> bytes:
    """u64 amount, i64 expiry, [u8; 32] coordinator salt."""
    return struct.pack("<Qq", request.amount, request.expires_at) + request.coordinator_salt


def encode_salts(salts: Sequence[bytes]) -> bytes:
    out = [struct.pack("<I", len(salts))]
    for salt in salts:
        if len(salt) != SALT_SIZE:
            raise InvalidFieldEncoding("salts", f"each salt must be {SALT_SIZE} bytes")
        out.append(bytes(salt))
    return b"".join(out)


def submit_signatures_instruction(
    program_id: Address,
    collateral: Address,
    approval_record: Address,
    rent_payer: Address,
    sender: Address,
    recipient: Address,
    asset: Address,
    request: WithdrawRequest,
    salts: Sequence[bytes],
    target_nonce: int,
    submission_variant: int = 0
) -> Instruction:
    """
    Record administrator signatures for a collateral withdrawal.

    The signatures themselves are checked by the verification instruction
    that precedes this one in the same transaction.
    """
    if not 0 <= target_nonce < 1 << 32:
        raise InvalidFieldEncoding("target_nonce", "must fit in u32")
    data = b"".join([
        instruction_discriminator(SUBMIT_SIGNATURES),
        encode_salts(salts),
        struct.pack("<I", target_nonce),
        struct.pack("<B", submission_variant),
        bytes(sender),
        bytes(recipient),
        bytes(asset),
        encode_withdraw_request(request),
    ])
    accounts = (
        AccountMeta(collateral, is_writable=True),
        AccountMeta(approval_record, is_writable=True),
        AccountMeta(rent_payer, is_signer=True, is_writable=True),
        AccountMeta(INSTRUCTIONS_SYSVAR_ID),
        AccountMeta(SYSTEM_PROGRAM_ID),
    )
    return Instruction(program_id=program_id, accounts=accounts, data=data)


def withdraw_collateral_asset_instruction(
    program_id: Address,
    sender: Address,
    recipient: Address,
    asset: Address,
    collateral_token_account: Address,
    recipient_token_account: Address,
    coordinator: Address,
    collateral: Address,
    approval_record: Address,
    request: WithdrawRequest
) -> Instruction:
    """Transfer the asset out of the collateral once both approvals are in place."""
    data = instruction_discriminator(WITHDRAW_COLLATERAL_ASSET) + encode_withdraw_request(request)
    accounts = (
        AccountMeta(sender, is_signer=True, is_writable=True),
        AccountMeta(recipient),
        AccountMeta(asset),
        AccountMeta(collateral_token_account, is_writable=True),
        AccountMeta(recipient_token_account, is_writable=True),
        AccountMeta(coordinator),
        AccountMeta(collateral, is_writable=True),
        AccountMeta(approval_record, is_writable=True),
        AccountMeta(INSTRUCTIONS_SYSVAR_ID),
        AccountMeta(TOKEN_PROGRAM_ID),
    )
    return Instruction(program_id=program_id, accounts=accounts, data=data)


def instruction_name(instruction: Instruction) -> str:
    """Name of a withdrawal program instruction, or "" if the discriminator is unknown."""
    prefix = instruction.data[:8]
    for name in (SUBMIT_SIGNATURES, WITHDRAW_COLLATERAL_ASSET):
        if prefix == instruction_discriminator(name):
            return name
    return ""

