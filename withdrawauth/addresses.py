"""
Ledger Addresses

32-byte account addresses with base58 text form, plus the deterministic
derivations the withdrawal flow relies on:

- program-derived addresses (PDAs): off-curve addresses computed from seeds
  and a program id, used as content-addressed lookup keys
- associated token addresses: the canonical token account of an owner for
  a given mint
"""

import hashlib
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import base58

from .errors import InvalidFieldEncoding

ADDRESS_SIZE = 32
MAX_SEED_LENGTH = 32
MAX_SEEDS = 16
PDA_MARKER = b"ProgramDerivedAddress"

# Ed25519 curve parameters
_P = 2 ** 255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


@dataclass(frozen=True)
class Address:
    """An immutable 32-byte ledger address."""
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)):
            raise InvalidFieldEncoding("address", f"expected bytes, got {type(self.raw).__name__}")
        if len(self.raw) != ADDRESS_SIZE:
            raise InvalidFieldEncoding(
                "address", f"must be {ADDRESS_SIZE} bytes, got {len(self.raw)}"
            )
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_base58(cls, value: str) -> 'Address':
        try:
            raw = base58.b58decode(value)
        except ValueError:
            raise InvalidFieldEncoding("address", f"invalid base58: {value!r}")
        return cls(raw)

    @classmethod
    def parse(cls, value: Union['Address', str, bytes]) -> 'Address':
        """Accept an Address, a base58 string or 32 raw bytes."""
        if isinstance(value, Address):
            return value
        if isinstance(value, str):
            return cls.from_base58(value)
        return cls(bytes(value))

    def to_base58(self) -> str:
        return base58.b58encode(self.raw).decode('ascii')

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return self.to_base58()

    def __repr__(self) -> str:
        return f"Address('{self.to_base58()}')"


# Well-known programs
SYSTEM_PROGRAM_ID = Address.from_base58("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Address.from_base58("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Address.from_base58("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
ED25519_PROGRAM_ID = Address.from_base58("Ed25519SigVerify111111111111111111111111111")
INSTRUCTIONS_SYSVAR_ID = Address.from_base58("Sysvar1nstructions1111111111111111111111111")


def is_on_curve(value: Union[Address, bytes]) -> bool:
    """
    Check whether 32 bytes decompress to a point on the Ed25519 curve.

    Mirrors the runtime's check: the sign bit is ignored and y is reduced
    modulo p, so only the existence of a square root for x^2 matters.
    Small-order and non-prime-subgroup points count as on-curve.
    """
    raw = bytes(value)
    if len(raw) != ADDRESS_SIZE:
        raise InvalidFieldEncoding("point", f"must be {ADDRESS_SIZE} bytes")
    y = (int.from_bytes(raw, "little") & ((1 << 255) - 1)) % _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    # Euler's criterion
    return pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: Sequence[bytes]):
    if len(seeds) > MAX_SEEDS:
        raise InvalidFieldEncoding("seeds", f"at most {MAX_SEEDS} seeds allowed")
    for seed in seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise InvalidFieldEncoding("seeds", f"seed longer than {MAX_SEED_LENGTH} bytes")


def create_program_address(seeds: Sequence[bytes], program_id: Address) -> Address:
    """
    Derive an address from seeds (the bump included) and a program id.

    Raises:
        InvalidFieldEncoding: seeds are too long/many, or the hash lands on the curve
    """
    _check_seeds(seeds)
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(bytes(seed))
    hasher.update(bytes(program_id))
    hasher.update(PDA_MARKER)
    candidate = hasher.digest()
    if is_on_curve(candidate):
        raise InvalidFieldEncoding("seeds", "derived address falls on the ed25519 curve")
    return Address(candidate)


def find_program_address(seeds: Sequence[bytes], program_id: Address) -> Tuple[Address, int]:
    """
    Find the first off-curve program address, trying bump seeds 255 down to 0.

    Returns:
        Tuple of (address, bump)
    """
    seeds = [bytes(s) for s in seeds]
    _check_seeds(seeds + [b"\x00"])
    for bump in range(255, -1, -1):
        try:
            return create_program_address(seeds + [bytes([bump])], program_id), bump
        except InvalidFieldEncoding:
            continue
    raise InvalidFieldEncoding("seeds", "no viable bump seed found")


def get_associated_token_address(
    owner: Address,
    mint: Address,
    allow_owner_off_curve: bool = False,
    token_program_id: Address = TOKEN_PROGRAM_ID
) -> Address:
    """
    Derive the associated token account of `owner` for `mint`.

    Owners that are themselves program-derived (off-curve) are only accepted
    with allow_owner_off_curve=True.
    """
    if not allow_owner_off_curve and not is_on_curve(owner):
        raise InvalidFieldEncoding("owner", f"{owner} is off-curve")
    address, _ = find_program_address(
        [bytes(owner), bytes(token_program_id), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address
