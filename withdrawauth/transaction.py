"""
Transaction building blocks.

Instructions are plain immutable values; serialization and signing for the
wire belong to the ledger client that submits them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from .addresses import Address


@dataclass(frozen=True)
class AccountMeta:
    pubkey: Address
    is_signer: bool = False
    is_writable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pubkey": str(self.pubkey),
            "is_signer": self.is_signer,
            "is_writable": self.is_writable,
        }


@dataclass(frozen=True)
class Instruction:
    program_id: Address
    accounts: Tuple[AccountMeta, ...]
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": str(self.program_id),
            "accounts": [a.to_dict() for a in self.accounts],
            "data": self.data.hex(),
        }


@dataclass(frozen=True)
class Transaction:
    """An ordered set of instructions executed atomically."""
    fee_payer: Address
    instructions: Tuple[Instruction, ...] = field(default_factory=tuple)

    def signer_addresses(self) -> List[Address]:
        """Fee payer first, then every other signing account in instruction order."""
        signers = [self.fee_payer]
        for ix in self.instructions:
            for meta in ix.accounts:
                if meta.is_signer and meta.pubkey not in signers:
                    signers.append(meta.pubkey)
        return signers

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fee_payer": str(self.fee_payer),
            "instructions": [ix.to_dict() for ix in self.instructions],
        }
