"""
withdrawauth: Two-Approval Withdrawal Authorization

Version: 1.0.0

A withdrawal from a collateral account executes only when two independent
approvals are present on the ledger:

    custody administrator approval   recorded in an approval record
    coordinator approval             verified in the withdrawal transaction

This package builds everything the ledger checks:
- typed, domain-separated message digests for both approvals
- Ed25519 signature-verification instruction data
- the withdrawal program instructions

and runs the idempotent two-phase submission protocol.

Usage:
    from withdrawauth import (
        AuthorizationConfig,
        KeypairSigner,
        WithdrawalOrchestrator,
        WithdrawalParameters,
        WithdrawRequest,
    )

    config = AuthorizationConfig.from_env()
    orchestrator = WithdrawalOrchestrator(ledger, config)

    parameters = WithdrawalParameters(
        collateral="3eZDvw9tgCEPqprPWH5PCM47dQ1yvVTECQkzdqnCZv16",
        deposit_address="3eZDvw9tgCEPqprPWH5PCM47dQ1yvVTECQkzdqnCZv16",
        recipient="4iu37ZckR6MvJhYF7jbAcva3e6io29ABP1b3F7FpBbcT",
        asset="CcuoBwMZJgupcdx81m3vYqBongw2PhhZ4yiYA2jo3K5",
        request=WithdrawRequest(amount=1000000, expires_at=1763066371, coordinator_salt=salt),
        coordinator_signature=signature,
    )

    result = orchestrator.execute_withdrawal(admin_signer, parameters)
"""

__version__ = "1.0.0"

from .addresses import (
    Address,
    find_program_address,
    create_program_address,
    get_associated_token_address,
    is_on_curve,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    ED25519_PROGRAM_ID,
    INSTRUCTIONS_SYSVAR_ID,
)

from .encoding import (
    keccak256,
    keccak256_hex,
    encode_address,
    encode_uint,
    encode_uint32,
    encode_uint64,
    encode_bytes,
    encode_string,
)

from .messages import (
    MessageSchema,
    TypedMessage,
    TypedMessageCodec,
    CUSTODY_WITHDRAW,
    COORDINATOR_WITHDRAW,
    CUSTODY_CODEC,
    COORDINATOR_CODEC,
    domain_separator,
    withdraw_fields,
    custody_struct_hash,
    custody_withdraw_digest,
    coordinator_withdraw_digest,
)

from .ed25519_program import (
    SignatureEntry,
    build_signature_verification_data,
    create_signature_verification_instruction,
    parse_signature_verification_data,
    verify_signature_verification_data,
)

from .transaction import (
    AccountMeta,
    Instruction,
    Transaction,
)

from .request import (
    WithdrawRequest,
    WithdrawalParameters,
)

from .program import (
    instruction_discriminator,
    submit_signatures_instruction,
    withdraw_collateral_asset_instruction,
)

from .ledger import (
    Ledger,
    InMemoryLedger,
    CollateralAccount,
    CoordinatorAccount,
    ApprovalRecord,
    SignatureStatus,
)

from .signing import (
    Signer,
    KeypairSigner,
    AwsKmsEd25519Signer,
    verify_signature,
)

from .config import AuthorizationConfig

from .orchestrator import (
    WithdrawalOrchestrator,
    WithdrawalState,
    WithdrawalAttempt,
    WithdrawalResult,
)

from .errors import (
    WithdrawAuthError,
    EncodingError,
    EncodingOverflow,
    InvalidFieldEncoding,
    FramingError,
    InvalidEntrySize,
    TooManySignatures,
    AuthorizationError,
    NoApproverConfigured,
    CoordinatorSignatureMismatch,
    TransportFailure,
    AccountNotFound,
    TransactionRejected,
    ConfirmationTimeout,
    DuplicateApproval,
    classify_rejection,
)

__all__ = [
    # Version
    "__version__",

    # Addresses
    "Address",
    "find_program_address",
    "create_program_address",
    "get_associated_token_address",
    "is_on_curve",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "ED25519_PROGRAM_ID",
    "INSTRUCTIONS_SYSVAR_ID",

    # Encoding
    "keccak256",
    "keccak256_hex",
    "encode_address",
    "encode_uint",
    "encode_uint32",
    "encode_uint64",
    "encode_bytes",
    "encode_string",

    # Messages
    "MessageSchema",
    "TypedMessage",
    "TypedMessageCodec",
    "CUSTODY_WITHDRAW",
    "COORDINATOR_WITHDRAW",
    "CUSTODY_CODEC",
    "COORDINATOR_CODEC",
    "domain_separator",
    "withdraw_fields",
    "custody_struct_hash",
    "custody_withdraw_digest",
    "coordinator_withdraw_digest",

    # Signature verification instructions
    "SignatureEntry",
    "build_signature_verification_data",
    "create_signature_verification_instruction",
    "parse_signature_verification_data",
    "verify_signature_verification_data",

    # Transactions
    "AccountMeta",
    "Instruction",
    "Transaction",

    # Requests
    "WithdrawRequest",
    "WithdrawalParameters",

    # Program instructions
    "instruction_discriminator",
    "submit_signatures_instruction",
    "withdraw_collateral_asset_instruction",

    # Ledger
    "Ledger",
    "InMemoryLedger",
    "CollateralAccount",
    "CoordinatorAccount",
    "ApprovalRecord",
    "SignatureStatus",

    # Signing
    "Signer",
    "KeypairSigner",
    "AwsKmsEd25519Signer",
    "verify_signature",

    # Orchestration
    "AuthorizationConfig",
    "WithdrawalOrchestrator",
    "WithdrawalState",
    "WithdrawalAttempt",
    "WithdrawalResult",

    # Errors
    "WithdrawAuthError",
    "EncodingError",
    "EncodingOverflow",
    "InvalidFieldEncoding",
    "FramingError",
    "InvalidEntrySize",
    "TooManySignatures",
    "AuthorizationError",
    "NoApproverConfigured",
    "CoordinatorSignatureMismatch",
    "TransportFailure",
    "AccountNotFound",
    "TransactionRejected",
    "ConfirmationTimeout",
    "DuplicateApproval",
    "classify_rejection",
]
