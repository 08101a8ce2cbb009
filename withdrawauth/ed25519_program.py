"""
Ed25519 Signature Verification Instructions

Frames (public key, signature, message) triples into the instruction data
layout consumed by the Ed25519 signature-verification program:

    byte 0          number of signatures N
    byte 1          padding
    2 + 14*i        descriptor i: seven little-endian u16 values
                      signature offset, signature instruction index,
                      public key offset, public key instruction index,
                      message offset, message size, message instruction index
    2 + 14*N        data region: per entry, 32-byte key, 64-byte signature,
                    32-byte message

Instruction indexes are always CURRENT_INSTRUCTION: all data lives in the
verification instruction itself.
"""

import struct
from dataclasses import dataclass
from typing import List, Sequence

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from .addresses import ED25519_PROGRAM_ID, Address
from .errors import FramingError, InvalidEntrySize, TooManySignatures
from .transaction import Instruction

CURRENT_INSTRUCTION = 0xFFFF
HEADER_SIZE = 2
DESCRIPTOR_SIZE = 14
PUBKEY_SIZE = 32
SIGNATURE_SIZE = 64
MESSAGE_SIZE = 32
ENTRY_DATA_SIZE = PUBKEY_SIZE + SIGNATURE_SIZE + MESSAGE_SIZE
MAX_SIGNATURES = 255

_DESCRIPTOR = struct.Struct("<7H")


@dataclass(frozen=True)
class SignatureEntry:
    """One signature to verify. Sizes are fixed; nothing is padded or truncated."""
    signer: Address
    signature: bytes
    message: bytes

    def __post_init__(self):
        if not isinstance(self.signer, Address):
            object.__setattr__(self, "signer", Address.parse(self.signer))
        if len(self.signature) != SIGNATURE_SIZE:
            raise InvalidEntrySize(
                f"Signature size must be {SIGNATURE_SIZE} bytes, got {len(self.signature)}"
            )
        if len(self.message) != MESSAGE_SIZE:
            raise InvalidEntrySize(
                f"Message size must be {MESSAGE_SIZE} bytes, got {len(self.message)}"
            )
        object.__setattr__(self, "signature", bytes(self.signature))
        object.__setattr__(self, "message", bytes(self.message))


@dataclass(frozen=True)
class SignatureDescriptor:
    """Offsets of one entry inside the instruction data."""
    public_key_offset: int
    signature_offset: int
    message_offset: int
    descriptor_offset: int

    @classmethod
    def for_index(cls, index: int, data_start: int) -> 'SignatureDescriptor':
        public_key_offset = index * ENTRY_DATA_SIZE + data_start
        signature_offset = public_key_offset + PUBKEY_SIZE
        return cls(
            public_key_offset=public_key_offset,
            signature_offset=signature_offset,
            message_offset=signature_offset + SIGNATURE_SIZE,
            descriptor_offset=index * DESCRIPTOR_SIZE + HEADER_SIZE,
        )

    def pack(self) -> bytes:
        return _DESCRIPTOR.pack(
            self.signature_offset,
            CURRENT_INSTRUCTION,
            self.public_key_offset,
            CURRENT_INSTRUCTION,
            self.message_offset,
            MESSAGE_SIZE,
            CURRENT_INSTRUCTION,
        )


def _validate_entries(entries: Sequence[SignatureEntry], max_signatures: int):
    limit = min(max_signatures, MAX_SIGNATURES)
    if not entries:
        raise InvalidEntrySize("At least one signature entry is required")
    if len(entries) > limit:
        raise TooManySignatures(len(entries), limit)
    for entry in entries:
        # Re-check sizes; entries may have been built around the dataclass.
        if len(entry.signature) != SIGNATURE_SIZE:
            raise InvalidEntrySize(f"Signature size must be {SIGNATURE_SIZE} bytes")
        if len(entry.message) != MESSAGE_SIZE:
            raise InvalidEntrySize(f"Message size must be {MESSAGE_SIZE} bytes")
        if len(bytes(entry.signer)) != PUBKEY_SIZE:
            raise InvalidEntrySize(f"Public key size must be {PUBKEY_SIZE} bytes")


def build_signature_verification_data(
    entries: Sequence[SignatureEntry],
    max_signatures: int = MAX_SIGNATURES
) -> bytes:
    """
    Encode signature entries into verification instruction data.

    All entries are validated before the buffer is allocated.

    Raises:
        InvalidEntrySize: empty input or a wrong-sized field
        TooManySignatures: more entries than max_signatures (at most 255)
    """
    _validate_entries(entries, max_signatures)

    count = len(entries)
    data_start = count * DESCRIPTOR_SIZE + HEADER_SIZE
    buffer = bytearray(count * (DESCRIPTOR_SIZE + ENTRY_DATA_SIZE) + HEADER_SIZE)
    buffer[0] = count

    for index, entry in enumerate(entries):
        descriptor = SignatureDescriptor.for_index(index, data_start)
        start = descriptor.descriptor_offset
        buffer[start:start + DESCRIPTOR_SIZE] = descriptor.pack()
        buffer[descriptor.public_key_offset:descriptor.signature_offset] = bytes(entry.signer)
        buffer[descriptor.signature_offset:descriptor.message_offset] = entry.signature
        buffer[descriptor.message_offset:descriptor.message_offset + MESSAGE_SIZE] = entry.message

    return bytes(buffer)


def create_signature_verification_instruction(
    entries: Sequence[SignatureEntry],
    max_signatures: int = MAX_SIGNATURES
) -> Instruction:
    """Build the verification instruction. It references no accounts."""
    return Instruction(
        program_id=ED25519_PROGRAM_ID,
        accounts=(),
        data=build_signature_verification_data(entries, max_signatures),
    )


def _slice(data: bytes, offset: int, size: int, what: str) -> bytes:
    if offset + size > len(data):
        raise FramingError(f"{what} at offset {offset} runs past end of data ({len(data)} bytes)")
    return data[offset:offset + size]


def parse_signature_verification_data(data: bytes) -> List[SignatureEntry]:
    """
    Decode verification instruction data back into entries by following
    each descriptor's offsets.

    Raises:
        FramingError: truncated data, a descriptor pointing at another
            instruction, or an offset outside the data
    """
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise FramingError("Instruction data shorter than header")

    count = data[0]
    if count == 0:
        raise FramingError("Instruction data declares zero signatures")

    entries = []
    for index in range(count):
        raw = _slice(data, HEADER_SIZE + index * DESCRIPTOR_SIZE, DESCRIPTOR_SIZE, "descriptor")
        (
            signature_offset,
            signature_ix,
            public_key_offset,
            public_key_ix,
            message_offset,
            message_size,
            message_ix,
        ) = _DESCRIPTOR.unpack(raw)

        if {signature_ix, public_key_ix, message_ix} != {CURRENT_INSTRUCTION}:
            raise FramingError(f"Descriptor {index} references data in another instruction")
        if message_size != MESSAGE_SIZE:
            raise InvalidEntrySize(f"Descriptor {index} declares a {message_size}-byte message")

        entries.append(SignatureEntry(
            signer=Address(_slice(data, public_key_offset, PUBKEY_SIZE, "public key")),
            signature=_slice(data, signature_offset, SIGNATURE_SIZE, "signature"),
            message=_slice(data, message_offset, message_size, "message"),
        ))
    return entries


def verify_signature_verification_data(data: bytes) -> bool:
    """
    Check every signature in verification instruction data, as the runtime does.

    Returns:
        True if the data is well-formed and every signature verifies
    """
    try:
        entries = parse_signature_verification_data(data)
    except FramingError:
        return False
    return all(_verify_entry(entry) for entry in entries)


def _verify_entry(entry: SignatureEntry) -> bool:
    try:
        VerifyKey(bytes(entry.signer)).verify(entry.message, entry.signature)
        return True
    except (BadSignatureError, ValueError):
        return False

