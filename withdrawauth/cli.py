#!/usr/bin/env python3
"""
withdrawauth Command Line Interface

Usage:
    withdrawauth digest --file <request.json>
    withdrawauth frame --file <entries.json>
    withdrawauth verify --data <hex>
    withdrawauth parse-response --file <response.json> [--deposit-address <address>]
    withdrawauth keygen [--output <file>]
    withdrawauth demo
"""

import argparse
import json
import sys

from pydantic import ValidationError

from .config import LOG_JSON, LOG_LEVEL, is_debug, is_production
from .errors import WithdrawAuthError
from .logging_config import configure_logging


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def cmd_digest(args):
    """Compute the domain separator, struct hash and digest of a withdrawal message."""
    from .addresses import Address, find_program_address
    from .messages import COORDINATOR_CODEC, CUSTODY_CODEC, withdraw_fields
    from .models import DigestRequest
    from .orchestrator import APPROVAL_RECORD_SEED

    req = DigestRequest(**load_json(args.file))
    fields = withdraw_fields(
        Address.from_base58(req.collateral),
        Address.from_base58(req.sender),
        Address.from_base58(req.recipient),
        Address.from_base58(req.asset),
        req.amount,
        req.nonce,
        req.expires_at,
    )

    if req.kind == "custody":
        codec = CUSTODY_CODEC
        verifying_entity = Address.from_base58(req.collateral)
    else:
        if not req.coordinator:
            print("coordinator is required for coordinator messages", file=sys.stderr)
            return 1
        codec = COORDINATOR_CODEC
        verifying_entity = Address.from_base58(req.coordinator)

    salt = req.salt_bytes()
    struct_hash = codec.struct_hash(fields)
    output = {
        "kind": req.kind,
        "type_hash": codec.schema.type_hash,
        "domain_separator": codec.domain_separator(verifying_entity, salt),
        "struct_hash": struct_hash,
        "digest": codec.digest(fields, verifying_entity, salt).hex(),
    }

    if req.kind == "custody" and req.program_id:
        record, bump = find_program_address(
            [APPROVAL_RECORD_SEED, bytes(verifying_entity), bytes.fromhex(struct_hash)],
            Address.from_base58(req.program_id),
        )
        output["approval_record"] = str(record)
        output["approval_record_bump"] = bump

    print(json.dumps(output, indent=2))
    return 0


def cmd_frame(args):
    """Frame signature entries into verification instruction data."""
    from .ed25519_program import create_signature_verification_instruction
    from .models import FrameRequest

    req = FrameRequest(**load_json(args.file))
    instruction = create_signature_verification_instruction([e.to_entry() for e in req.entries])

    if args.json:
        print(json.dumps(instruction.to_dict(), indent=2))
    else:
        print(instruction.data.hex())
    return 0


def cmd_verify(args):
    """Check every signature in verification instruction data."""
    from .ed25519_program import parse_signature_verification_data
    from .signing import verify_signature

    try:
        data = bytes.fromhex(args.data)
    except ValueError:
        print("✗ INVALID: data is not hex", file=sys.stderr)
        return 1

    entries = parse_signature_verification_data(data)
    all_valid = True
    for index, entry in enumerate(entries):
        valid = verify_signature(entry.message, entry.signature, entry.signer)
        all_valid = all_valid and valid
        mark = "✓" if valid else "✗"
        print(f"{mark} [{index}] {entry.signer} message {entry.message.hex()}")

    if all_valid:
        print(f"\n✓ {len(entries)} signature(s) valid", file=sys.stderr)
        return 0
    print("\n✗ INVALID signature data", file=sys.stderr)
    return 1


def cmd_parse_response(args):
    """Decode a signing-service response into withdrawal parameters."""
    from .models import SigningServiceResponse

    response = SigningServiceResponse(**load_json(args.file))
    parameters = response.to_withdrawal_parameters(args.deposit_address)
    print(json.dumps(parameters.to_dict(), indent=2))
    return 0


def cmd_keygen(args):
    """Generate an Ed25519 key pair."""
    from .signing import KeypairSigner

    signer = KeypairSigner.generate()
    keypair = {
        "public_key": str(signer.public_key),
        "secret_key": list(signer.secret_key),
    }

    if not args.output and is_production():
        print("✗ Refusing to print a secret key in production; use --output", file=sys.stderr)
        return 1

    if args.output:
        save_json(keypair, args.output)
        print(f"Key pair saved to: {args.output}")
        print(f"Public key: {signer.public_key}")
    else:
        print(json.dumps(keypair, indent=2))
    return 0


def cmd_demo(args):
    """Run a withdrawal end to end against an in-memory ledger."""
    from .config import AuthorizationConfig
    from .ledger import InMemoryLedger
    from .messages import coordinator_withdraw_digest
    from .orchestrator import WithdrawalOrchestrator
    from .request import WithdrawRequest, WithdrawalParameters
    from .signing import KeypairSigner

    print("=" * 60)
    print("withdrawauth Demonstration")
    print("=" * 60)

    program_id = KeypairSigner.generate().public_key
    collateral = KeypairSigner.generate().public_key
    coordinator = KeypairSigner.generate().public_key
    asset = KeypairSigner.generate().public_key
    recipient = KeypairSigner.generate().public_key
    approver = KeypairSigner.generate()
    admin = KeypairSigner.generate()
    nonce = 7

    ledger = InMemoryLedger(program_id)
    ledger.add_collateral(collateral, admin_funds_nonce=nonce, coordinator=coordinator)
    ledger.add_coordinator(coordinator, approvers=[approver.public_key])

    request = WithdrawRequest(amount=1000000, expires_at=1763066371, coordinator_salt=bytes(range(32)))
    coordinator_digest = coordinator_withdraw_digest(
        collateral, coordinator, admin.public_key, recipient, asset,
        request.amount, nonce, request.expires_at, request.coordinator_salt,
    )
    parameters = WithdrawalParameters(
        collateral=collateral,
        deposit_address=collateral,
        recipient=recipient,
        asset=asset,
        request=request,
        coordinator_signature=approver.sign(coordinator_digest),
    )

    orchestrator = WithdrawalOrchestrator(ledger, AuthorizationConfig(program_id=program_id))

    print("\n--- First attempt: custody approval submitted ---")
    result = orchestrator.execute_withdrawal(admin, parameters)
    print(json.dumps(result.to_dict(), indent=2))

    print("\n--- Second attempt: existing approval reused ---")
    result = orchestrator.execute_withdrawal(admin, parameters)
    print(json.dumps(result.to_dict(), indent=2))

    print(f"\nTransactions sent: {len(ledger.sent_transactions)}")
    print(f"Withdrawals executed: {len(ledger.withdrawals)}")
    print("\n" + "=" * 60)
    print("Demonstration complete.")
    print("=" * 60)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Withdrawal authorization CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  withdrawauth demo                       Run demonstration
  withdrawauth digest -f request.json
  withdrawauth frame -f entries.json
  withdrawauth verify -d 01000000...
  withdrawauth parse-response -f response.json
  withdrawauth keygen -o admin.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # digest
    digest_parser = subparsers.add_parser("digest", help="Compute withdrawal message digest")
    digest_parser.add_argument("-f", "--file", required=True, help="Digest request JSON file")

    # frame
    frame_parser = subparsers.add_parser("frame", help="Build Ed25519 verification instruction data")
    frame_parser.add_argument("-f", "--file", required=True, help="Signature entries JSON file")
    frame_parser.add_argument("--json", action="store_true", help="Print the full instruction")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify Ed25519 instruction data")
    verify_parser.add_argument("-d", "--data", required=True, help="Instruction data as hex")

    # parse-response
    response_parser = subparsers.add_parser("parse-response", help="Decode signing service response")
    response_parser.add_argument("-f", "--file", required=True, help="Response JSON file")
    response_parser.add_argument("--deposit-address", help="Deposit address (defaults to collateral)")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate signing key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for key pair")

    # demo
    subparsers.add_parser("demo", help="Run demonstration")

    args = parser.parse_args(argv)

    commands = {
        "digest": cmd_digest,
        "frame": cmd_frame,
        "verify": cmd_verify,
        "parse-response": cmd_parse_response,
        "keygen": cmd_keygen,
        "demo": cmd_demo,
    }
    if args.command not in commands:
        parser.print_help()
        return 2

    configure_logging("DEBUG" if is_debug() else LOG_LEVEL, json_format=LOG_JSON)
    try:
        return commands[args.command](args)
    except (WithdrawAuthError, ValidationError, ValueError) as e:
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
