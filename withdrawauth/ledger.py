"""
Ledger Access

The orchestrator talks to the ledger only through the Ledger interface:
account queries, token account provisioning, transaction submission and
status polling.

Architecture:
    WithdrawalOrchestrator
        ↓ Ledger
    RPC client (production) / InMemoryLedger (development, tests)

InMemoryLedger executes transactions the way the deployed programs do as far
as the withdrawal flow can observe: every Ed25519 verification instruction is
checked, approval records collect verified signers, a signer that already
approved is rejected, and all state changes of a transaction apply together
or not at all.
"""

import json
import struct
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

import base58

from .addresses import ED25519_PROGRAM_ID, Address, get_associated_token_address
from .ed25519_program import (
    SignatureEntry,
    parse_signature_verification_data,
    verify_signature_verification_data,
)
from .errors import AccountNotFound, TransactionRejected
from .program import SUBMIT_SIGNATURES, WITHDRAW_COLLATERAL_ASSET, instruction_name
from .signing import Signer
from .transaction import Transaction

# Reason reported when a signer submits an approval it already made
DUPLICATE_SIGNATURE_ERROR = "SignatureAlreadySubmitted"


@dataclass(frozen=True)
class CollateralAccount:
    """Collateral account state relevant to withdrawals."""
    address: Address
    admin_funds_nonce: int
    coordinator: Address


@dataclass(frozen=True)
class CoordinatorAccount:
    """Coordinating authority. The first approver signs withdrawals."""
    address: Address
    approvers: Tuple[Address, ...] = ()


@dataclass(frozen=True)
class ApprovalRecord:
    """Signers that already approved one withdrawal identifier."""
    address: Address
    signers: FrozenSet[Address] = frozenset()

    def has_approved(self, signer: Address) -> bool:
        return Address.parse(signer) in self.signers


@dataclass(frozen=True)
class SignatureStatus:
    """Processing status of a submitted transaction."""
    signature: str
    confirmed: bool = False
    err: Optional[str] = None
    logs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WithdrawalRecord:
    """A withdrawal executed by InMemoryLedger."""
    signature: str
    sender: Address
    recipient: Address
    asset: Address
    collateral: Address
    amount: int


class Ledger(ABC):
    """
    Abstract interface to the ledger.

    Implementations raise TransportFailure subclasses; they never retry on
    the caller's behalf.
    """

    @abstractmethod
    def fetch_collateral(self, address: Address) -> CollateralAccount:
        """Raises AccountNotFound if the account does not exist."""
        pass

    @abstractmethod
    def fetch_coordinator(self, address: Address) -> CoordinatorAccount:
        """Raises AccountNotFound if the account does not exist."""
        pass

    @abstractmethod
    def fetch_approval_record(self, address: Address) -> Optional[ApprovalRecord]:
        """Return the approval record, or None if nobody has approved yet."""
        pass

    @abstractmethod
    def ensure_token_account(self, payer: Signer, owner: Address, mint: Address) -> Address:
        """Return the owner's associated token account for mint, creating it if needed."""
        pass

    @abstractmethod
    def send_transaction(self, transaction: Transaction, signers: Sequence[Signer]) -> str:
        """
        Sign and submit a transaction.

        Returns:
            The transaction signature

        Raises:
            TransactionRejected: the ledger refused the transaction
        """
        pass

    @abstractmethod
    def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Return the status of a submitted transaction, or None while it is pending."""
        pass


@dataclass
class _PendingStatus:
    polls_remaining: int
    err: Optional[str] = None
    logs: Tuple[str, ...] = ()


@dataclass
class _Execution:
    """State changes staged by one transaction."""
    records: Dict[Address, FrozenSet[Address]] = field(default_factory=dict)
    withdrawals: List[WithdrawalRecord] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)


class InMemoryLedger(Ledger):
    """
    In-memory ledger for development and testing.

    WARNING: Not suitable for production.
    - Nothing is persisted
    - Program semantics are limited to what the withdrawal flow observes

    Failure injection:
        reject_next(reason, logs)      the next send_transaction raises
        fail_next_execution(err)       the next transaction is accepted but
                                       its status carries err
        confirmation_delay             polls returning None before a status
        stall_confirmations            statuses are never reported
    """

    def __init__(self, program_id: Address, confirmation_delay: int = 0):
        self.program_id = Address.parse(program_id)
        self.confirmation_delay = confirmation_delay
        self.stall_confirmations = False

        self._collaterals: Dict[Address, CollateralAccount] = {}
        self._coordinators: Dict[Address, CoordinatorAccount] = {}
        self._records: Dict[Address, FrozenSet[Address]] = {}
        self._token_accounts: Set[Address] = set()
        self._statuses: Dict[str, _PendingStatus] = {}
        self._rejections: Deque[TransactionRejected] = deque()
        self._execution_errors: Deque[str] = deque()
        self._slot = 0
        self._lock = threading.Lock()

        self.sent_transactions: List[Transaction] = []
        self.withdrawals: List[WithdrawalRecord] = []

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_collateral(self, address, admin_funds_nonce: int, coordinator) -> CollateralAccount:
        account = CollateralAccount(
            address=Address.parse(address),
            admin_funds_nonce=admin_funds_nonce,
            coordinator=Address.parse(coordinator),
        )
        with self._lock:
            self._collaterals[account.address] = account
        return account

    def add_coordinator(self, address, approvers: Sequence = ()) -> CoordinatorAccount:
        account = CoordinatorAccount(
            address=Address.parse(address),
            approvers=tuple(Address.parse(a) for a in approvers),
        )
        with self._lock:
            self._coordinators[account.address] = account
        return account

    def add_approval(self, record_address, signer) -> ApprovalRecord:
        """Record an approval directly, as if submitted earlier."""
        address = Address.parse(record_address)
        with self._lock:
            signers = self._records.get(address, frozenset()) | {Address.parse(signer)}
            self._records[address] = signers
        return ApprovalRecord(address=address, signers=signers)

    def reject_next(self, reason: str, logs: Sequence[str] = ()):
        with self._lock:
            self._rejections.append(TransactionRejected(reason, logs))

    def fail_next_execution(self, err: str):
        with self._lock:
            self._execution_errors.append(err)

    def has_token_account(self, address) -> bool:
        with self._lock:
            return Address.parse(address) in self._token_accounts

    # ------------------------------------------------------------------
    # Ledger interface
    # ------------------------------------------------------------------

    def fetch_collateral(self, address: Address) -> CollateralAccount:
        with self._lock:
            account = self._collaterals.get(Address.parse(address))
        if account is None:
            raise AccountNotFound(str(address), "collateral")
        return account

    def fetch_coordinator(self, address: Address) -> CoordinatorAccount:
        with self._lock:
            account = self._coordinators.get(Address.parse(address))
        if account is None:
            raise AccountNotFound(str(address), "coordinator")
        return account

    def fetch_approval_record(self, address: Address) -> Optional[ApprovalRecord]:
        address = Address.parse(address)
        with self._lock:
            signers = self._records.get(address)
        if signers is None:
            return None
        return ApprovalRecord(address=address, signers=signers)

    def ensure_token_account(self, payer: Signer, owner: Address, mint: Address) -> Address:
        token_account = get_associated_token_address(Address.parse(owner), Address.parse(mint))
        with self._lock:
            self._token_accounts.add(token_account)
        return token_account

    def send_transaction(self, transaction: Transaction, signers: Sequence[Signer]) -> str:
        by_key = {signer.public_key: signer for signer in signers}
        for required in transaction.signer_addresses():
            if required not in by_key:
                raise TransactionRejected(f"Missing signature for {required}")

        with self._lock:
            self.sent_transactions.append(transaction)
            self._slot += 1
            if self._rejections:
                raise self._rejections.popleft()

            signature = self._sign(transaction, by_key[transaction.fee_payer])
            execution = self._execute(transaction, signature)

            if self._execution_errors:
                err = self._execution_errors.popleft()
                self._statuses[signature] = _PendingStatus(
                    self.confirmation_delay, err=err, logs=tuple(execution.logs)
                )
                return signature

            self._records.update(execution.records)
            self.withdrawals.extend(execution.withdrawals)
            self._statuses[signature] = _PendingStatus(self.confirmation_delay)
            return signature

    def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        with self._lock:
            pending = self._statuses.get(signature)
            if pending is None or self.stall_confirmations:
                return None
            if pending.polls_remaining > 0:
                pending.polls_remaining -= 1
                return None
            return SignatureStatus(
                signature=signature,
                confirmed=pending.err is None,
                err=pending.err,
                logs=pending.logs,
            )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _sign(self, transaction: Transaction, fee_payer: Signer) -> str:
        payload: Dict[str, Any] = {"slot": self._slot, **transaction.to_dict()}
        message = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode('utf-8')
        return base58.b58encode(fee_payer.sign(message)).decode('ascii')

    def _execute(self, transaction: Transaction, signature: str) -> _Execution:
        """
        Run every instruction against staged state.

        Raises:
            TransactionRejected: any instruction fails; nothing is applied
        """
        execution = _Execution()
        verified: List[SignatureEntry] = []

        for index, ix in enumerate(transaction.instructions):
            if ix.program_id == ED25519_PROGRAM_ID:
                if not verify_signature_verification_data(ix.data):
                    raise TransactionRejected(
                        f"Error processing Instruction {index}: invalid Ed25519 signature",
                        logs=[f"Program {ED25519_PROGRAM_ID} failed: custom program error: 0x2"],
                    )
                verified.extend(parse_signature_verification_data(ix.data))
            elif ix.program_id == self.program_id:
                name = instruction_name(ix)
                execution.logs.append(f"Program log: Instruction: {name}")
                if name == SUBMIT_SIGNATURES:
                    self._submit_signatures(ix, verified, execution)
                elif name == WITHDRAW_COLLATERAL_ASSET:
                    self._withdraw_collateral_asset(ix, verified, execution, signature)
                else:
                    raise TransactionRejected(
                        f"Error processing Instruction {index}: unknown instruction",
                        logs=execution.logs,
                    )
        return execution

    def _submit_signatures(self, ix, verified: List[SignatureEntry], execution: _Execution):
        collateral = ix.accounts[0].pubkey
        record = ix.accounts[1].pubkey
        if collateral not in self._collaterals:
            raise TransactionRejected("AccountNotInitialized: collateral", logs=execution.logs)
        if not verified:
            raise TransactionRejected(
                "MissingSignatureVerification: no verified signatures precede submit_signatures",
                logs=execution.logs,
            )

        signers = execution.records.get(record, self._records.get(record, frozenset()))
        for entry in verified:
            if entry.signer in signers:
                execution.logs.append(
                    f"Program log: AnchorError occurred. Error Code: {DUPLICATE_SIGNATURE_ERROR}."
                )
                raise TransactionRejected(
                    f"custom program error: {DUPLICATE_SIGNATURE_ERROR}",
                    logs=execution.logs,
                )
        execution.records[record] = signers | {entry.signer for entry in verified}

    def _withdraw_collateral_asset(
        self,
        ix,
        verified: List[SignatureEntry],
        execution: _Execution,
        signature: str
    ):
        keys = [meta.pubkey for meta in ix.accounts]
        sender, recipient, asset, _, destination, coordinator, collateral, record = keys[:8]

        signers = execution.records.get(record, self._records.get(record, frozenset()))
        if sender not in signers:
            raise TransactionRejected("MissingAdminSignature: collateral admin has not approved",
                                      logs=execution.logs)

        account = self._coordinators.get(coordinator)
        if account is None:
            raise TransactionRejected("AccountNotInitialized: coordinator", logs=execution.logs)
        if not any(entry.signer in account.approvers for entry in verified):
            raise TransactionRejected("MissingCoordinatorSignature: no verified approver signature",
                                      logs=execution.logs)

        if destination not in self._token_accounts:
            raise TransactionRejected("AccountNotInitialized: receiver_token_account",
                                      logs=execution.logs)

        (amount,) = struct.unpack_from("<Q", ix.data, 8)
        execution.withdrawals.append(WithdrawalRecord(
            signature=signature,
            sender=sender,
            recipient=recipient,
            asset=asset,
            collateral=collateral,
            amount=amount,
        ))
