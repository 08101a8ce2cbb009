"""
Withdrawal Authorization Byte Encoding

Primitive encoders used to build typed withdrawal messages. Every encoder
returns lowercase hexadecimal; values are joined as hex strings and decoded
back to bytes only when hashed.

All hashes use Keccak-256 (the original Keccak padding used by Ethereum,
not FIPS SHA3-256).
"""

from typing import Union

from eth_hash.auto import keccak

from .errors import EncodingOverflow, InvalidFieldEncoding

ADDRESS_SIZE = 32
SUPPORTED_UINT_WIDTHS = (32, 64)

BytesLike = Union[bytes, bytearray, memoryview]


def keccak256(data: BytesLike) -> bytes:
    """Compute the Keccak-256 digest of raw bytes."""
    return keccak(bytes(data))


def keccak256_hex(hex_input: str) -> str:
    """
    Hash the bytes represented by a hex string.

    The input is decoded first: "00" hashes the single byte 0x00, not the
    two ASCII characters.

    Returns:
        64-character lowercase hex digest
    """
    try:
        raw = bytes.fromhex(hex_input)
    except (TypeError, ValueError):
        raise InvalidFieldEncoding("hex_input", "must be an even-length hex string")
    return keccak256(raw).hex()


def encode_string(value: str) -> str:
    """Hash the UTF-8 bytes of a string (type strings, domain name and version)."""
    if not isinstance(value, str):
        raise InvalidFieldEncoding("string", f"expected str, got {type(value).__name__}")
    return keccak256(value.encode('utf-8')).hex()


def encode_address(value) -> str:
    """
    Encode a 32-byte address as 64 hex characters.

    Accepts an Address or any bytes-like value of exactly 32 bytes.
    """
    if isinstance(value, (str, int)):
        raise InvalidFieldEncoding("address", f"cannot encode {type(value).__name__}")
    try:
        raw = bytes(value)
    except TypeError:
        raise InvalidFieldEncoding("address", f"cannot encode {type(value).__name__}")
    if len(raw) != ADDRESS_SIZE:
        raise InvalidFieldEncoding("address", f"must be {ADDRESS_SIZE} bytes")
    return raw.hex()


def encode_uint(value: int, bits: int) -> str:
    """
    Encode an unsigned integer as big-endian hex, zero-padded to bits/4 characters.

    Raises:
        EncodingOverflow: value is negative or does not fit in `bits`
        InvalidFieldEncoding: value is not an integer
    """
    if bits not in SUPPORTED_UINT_WIDTHS:
        raise ValueError(f"Unsupported integer width: {bits}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFieldEncoding(f"uint{bits}", f"expected int, got {type(value).__name__}")
    if value < 0 or value >= 1 << bits:
        raise EncodingOverflow(value, bits)
    return format(value, f"0{bits // 4}x")


def encode_uint32(value: int) -> str:
    return encode_uint(value, 32)


def encode_uint64(value: int) -> str:
    return encode_uint(value, 64)


def encode_bytes(value: BytesLike) -> str:
    """Encode raw bytes byte-for-byte as hex."""
    if isinstance(value, str):
        raise InvalidFieldEncoding("bytes", "expected bytes, got str")
    return bytes(value).hex()
