"""
Withdrawal Approval Messages

Typed structured-data hashing for the two withdrawal approval kinds:

- custody: signed by the collateral (custody) administrator
- coordinator: signed by the coordinating authority's approver

Both follow the EIP-712 pattern:

    digest = keccak256(0x1901 ++ domain_separator ++ struct_hash)

The kinds differ in type string, field schema, domain name, verifying entity
and salt, so a signature over one kind never verifies as the other.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

from .encoding import (
    encode_address,
    encode_bytes,
    encode_string,
    encode_uint32,
    encode_uint64,
    keccak256_hex,
)
from .errors import EncodingError, InvalidFieldEncoding

SIGNING_PREFIX = b"\x19\x01"
DOMAIN_TYPE = (
    "EIP712Domain(string name,string version,uint256 chainId,"
    "address verifyingContract,bytes32 salt)"
)
CHAIN_ID = 900
DOMAIN_VERSION = "2"
SALT_SIZE = 32


class FieldKind(str, Enum):
    """Wire encodings available to message fields."""
    ADDRESS = "address"
    UINT32 = "uint32"
    UINT64 = "uint64"


_ENCODERS = {
    FieldKind.ADDRESS: encode_address,
    FieldKind.UINT32: encode_uint32,
    FieldKind.UINT64: encode_uint64,
}


@dataclass(frozen=True)
class FieldDef:
    name: str
    kind: FieldKind


@dataclass(frozen=True)
class MessageSchema:
    """
    Schema of one typed message kind.

    type_string is hashed verbatim into the type hash; fields lists what is
    actually encoded, in order.
    """
    type_string: str
    fields: Tuple[FieldDef, ...]
    domain_name: str

    @property
    def type_hash(self) -> str:
        return encode_string(self.type_string)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)


@dataclass(frozen=True)
class TypedMessage:
    """Encoded fields of one message, ready for struct hashing."""
    type_hash: str
    fields: Tuple[str, ...] = field(default_factory=tuple)

    def encode(self) -> str:
        return self.type_hash + "".join(self.fields)

    def struct_hash(self) -> str:
        return keccak256_hex(self.encode())


# The custody type string does not name the collateral field even though it
# is encoded; the on-chain verifier hashes exactly this string.
CUSTODY_WITHDRAW = MessageSchema(
    type_string="Withdraw(address user,address asset,uint256 amount,address recipient,uint256 nonce)",
    fields=(
        FieldDef("user", FieldKind.ADDRESS),
        FieldDef("collateral", FieldKind.ADDRESS),
        FieldDef("asset", FieldKind.ADDRESS),
        FieldDef("amount", FieldKind.UINT64),
        FieldDef("recipient", FieldKind.ADDRESS),
        FieldDef("nonce", FieldKind.UINT32),
    ),
    domain_name="Collateral",
)

COORDINATOR_WITHDRAW = MessageSchema(
    type_string=(
        "Withdraw(address user,address collateral,address asset,uint256 amount,"
        "address recipient,uint256 nonce,uint256 expiresAt)"
    ),
    fields=(
        FieldDef("user", FieldKind.ADDRESS),
        FieldDef("collateral", FieldKind.ADDRESS),
        FieldDef("asset", FieldKind.ADDRESS),
        FieldDef("amount", FieldKind.UINT64),
        FieldDef("recipient", FieldKind.ADDRESS),
        FieldDef("nonce", FieldKind.UINT32),
        FieldDef("expires_at", FieldKind.UINT64),
    ),
    domain_name="Coordinator",
)


def _encode_salt(salt) -> str:
    if isinstance(salt, str):
        raise InvalidFieldEncoding("salt", "expected bytes, got str")
    try:
        raw = bytes(salt)
    except (TypeError, ValueError):
        raise InvalidFieldEncoding("salt", f"cannot encode {type(salt).__name__}")
    if len(raw) != SALT_SIZE:
        raise InvalidFieldEncoding("salt", f"must be {SALT_SIZE} bytes, got {len(raw)}")
    return encode_bytes(raw)


def domain_separator(
    name: str,
    version: str,
    chain_id: int,
    verifying_entity,
    salt
) -> str:
    """
    Compute the domain separator hash.

    Every component is encoded before the outer hash is taken.

    Returns:
        64-character hex digest
    """
    try:
        encoded = [
            encode_string(DOMAIN_TYPE),
            encode_string(name),
            encode_string(version),
            encode_uint64(chain_id),
            encode_address(verifying_entity),
            _encode_salt(salt),
        ]
    except InvalidFieldEncoding:
        raise
    except EncodingError as e:
        raise InvalidFieldEncoding("domain", str(e)) from e
    return keccak256_hex("".join(encoded))


class TypedMessageCodec:
    """
    Canonicalizer for one message schema.

    Usage:
        codec = TypedMessageCodec(CUSTODY_WITHDRAW)
        digest = codec.digest(fields, verifying_entity=collateral, salt=salt)
    """

    def __init__(
        self,
        schema: MessageSchema,
        chain_id: int = CHAIN_ID,
        version: str = DOMAIN_VERSION
    ):
        self.schema = schema
        self.chain_id = chain_id
        self.version = version

    def typed_message(self, values: Mapping[str, Any]) -> TypedMessage:
        """
        Encode every schema field.

        Raises:
            InvalidFieldEncoding: a field is missing, malformed or out of range
        """
        missing = [name for name in self.schema.field_names if name not in values]
        if missing:
            raise InvalidFieldEncoding(missing[0], "is required")

        encoded = []
        for field_def in self.schema.fields:
            try:
                encoded.append(_ENCODERS[field_def.kind](values[field_def.name]))
            except EncodingError as e:
                raise InvalidFieldEncoding(field_def.name, str(e)) from e
        return TypedMessage(type_hash=self.schema.type_hash, fields=tuple(encoded))

    def struct_hash(self, values: Mapping[str, Any]) -> str:
        return self.typed_message(values).struct_hash()

    def domain_separator(self, verifying_entity, salt) -> str:
        return domain_separator(
            self.schema.domain_name,
            self.version,
            self.chain_id,
            verifying_entity,
            salt,
        )

    def digest(self, values: Mapping[str, Any], verifying_entity, salt) -> bytes:
        """
        Compute the final 32-byte digest signers sign.

        Both the domain and the struct are fully encoded before anything is
        hashed, so invalid input never produces a partial result.
        """
        message = self.typed_message(values)
        separator = self.domain_separator(verifying_entity, salt)
        encoded = encode_bytes(SIGNING_PREFIX) + separator + message.struct_hash()
        return bytes.fromhex(keccak256_hex(encoded))


CUSTODY_CODEC = TypedMessageCodec(CUSTODY_WITHDRAW)
COORDINATOR_CODEC = TypedMessageCodec(COORDINATOR_WITHDRAW)


def withdraw_fields(
    collateral,
    sender,
    recipient,
    asset,
    amount: int,
    nonce: int,
    expires_at: int = 0
) -> Dict[str, Any]:
    """Collect withdrawal values under the schema field names."""
    return {
        "user": sender,
        "collateral": collateral,
        "asset": asset,
        "amount": amount,
        "recipient": recipient,
        "nonce": nonce,
        "expires_at": expires_at,
    }


def custody_struct_hash(collateral, sender, recipient, asset, amount: int, nonce: int) -> str:
    """Struct hash of the custody message; doubles as the approval record id."""
    return CUSTODY_CODEC.struct_hash(
        withdraw_fields(collateral, sender, recipient, asset, amount, nonce)
    )


def custody_withdraw_digest(
    collateral,
    sender,
    recipient,
    asset,
    amount: int,
    nonce: int,
    salt
) -> bytes:
    """Digest the custody administrator signs. The domain is bound to the collateral account."""
    return CUSTODY_CODEC.digest(
        withdraw_fields(collateral, sender, recipient, asset, amount, nonce),
        verifying_entity=collateral,
        salt=salt,
    )


def coordinator_withdraw_digest(
    collateral,
    coordinator,
    sender,
    recipient,
    asset,
    amount: int,
    nonce: int,
    expires_at: int,
    salt
) -> bytes:
    """Digest the coordinator approver signs. The domain is bound to the coordinator account."""
    return COORDINATOR_CODEC.digest(
        withdraw_fields(collateral, sender, recipient, asset, amount, nonce, expires_at),
        verifying_entity=coordinator,
        salt=salt,
    )
