"""
Withdrawal Orchestrator

Runs the two-approval withdrawal protocol against a Ledger:

    START
      ↓ approval record fetched
    CUSTODY_APPROVAL_CHECKED
      ↓ (only if the sender has not approved yet)
    CUSTODY_APPROVAL_SUBMITTED
      ↓ first coordinator approver selected
    COORDINATOR_RESOLVED
      ↓ coordinator verification + withdrawal in one transaction
    TRANSACTION_SUBMITTED
      ↓
    CONFIRMED

Any error moves the attempt to FAILED and propagates to the caller with the
attempt attached as `withdrawal_attempt`.

The custody approval step is idempotent: an approval that is already on the
ledger is not resubmitted, and a submission that loses a race against a
concurrent identical submission is treated as success.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .addresses import Address, find_program_address, get_associated_token_address
from .config import AuthorizationConfig
from .ed25519_program import SignatureEntry, create_signature_verification_instruction
from .errors import (
    ConfirmationTimeout,
    CoordinatorSignatureMismatch,
    DuplicateApproval,
    NoApproverConfigured,
    TransactionRejected,
    classify_rejection,
)
from .ledger import ApprovalRecord, CollateralAccount, CoordinatorAccount, Ledger, SignatureStatus
from .logging_config import audit_log, set_attempt_id
from .messages import SALT_SIZE, coordinator_withdraw_digest, custody_struct_hash, custody_withdraw_digest
from .program import submit_signatures_instruction, withdraw_collateral_asset_instruction
from .request import WithdrawalParameters
from .signing import Signer, verify_signature
from .transaction import Transaction

logger = logging.getLogger(__name__)

APPROVAL_RECORD_SEED = b"CollateralAdminSignatures"


class WithdrawalState(str, Enum):
    """States of one withdrawal attempt."""
    START = "START"
    CUSTODY_APPROVAL_CHECKED = "CUSTODY_APPROVAL_CHECKED"
    CUSTODY_APPROVAL_SUBMITTED = "CUSTODY_APPROVAL_SUBMITTED"
    COORDINATOR_RESOLVED = "COORDINATOR_RESOLVED"
    TRANSACTION_SUBMITTED = "TRANSACTION_SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


@dataclass
class WithdrawalAttempt:
    """Mutable progress of one execute_withdrawal call."""
    attempt_id: str
    states: List[WithdrawalState] = field(default_factory=lambda: [WithdrawalState.START])
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    approval_record: Optional[Address] = None
    approval_signature: Optional[str] = None
    duplicate_approval: bool = False
    approver: Optional[Address] = None
    withdrawal_signature: Optional[str] = None

    @property
    def state(self) -> WithdrawalState:
        return self.states[-1]

    def advance(self, state: WithdrawalState):
        logger.debug("Attempt %s: %s -> %s", self.attempt_id, self.state.value, state.value)
        self.states.append(state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "states": [s.value for s in self.states],
            "started_at": self.started_at.isoformat().replace("+00:00", "Z"),
            "approval_record": str(self.approval_record) if self.approval_record else None,
            "approval_signature": self.approval_signature,
            "duplicate_approval": self.duplicate_approval,
            "approver": str(self.approver) if self.approver else None,
            "withdrawal_signature": self.withdrawal_signature,
        }


@dataclass(frozen=True)
class WithdrawalResult:
    """Outcome of a confirmed withdrawal."""
    signature: str
    approval_record: Address
    approver: Address
    states: Tuple[WithdrawalState, ...]
    attempt_id: str
    approval_signature: Optional[str] = None
    duplicate_approval: bool = False

    @property
    def approval_submitted(self) -> bool:
        return WithdrawalState.CUSTODY_APPROVAL_SUBMITTED in self.states

    @classmethod
    def from_attempt(cls, attempt: WithdrawalAttempt) -> 'WithdrawalResult':
        return cls(
            signature=attempt.withdrawal_signature,
            approval_record=attempt.approval_record,
            approver=attempt.approver,
            states=tuple(attempt.states),
            attempt_id=attempt.attempt_id,
            approval_signature=attempt.approval_signature,
            duplicate_approval=attempt.duplicate_approval,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "approval_record": str(self.approval_record),
            "approver": str(self.approver),
            "states": [s.value for s in self.states],
            "attempt_id": self.attempt_id,
            "approval_signature": self.approval_signature,
            "duplicate_approval": self.duplicate_approval,
        }


def _random_salt() -> bytes:
    return secrets.token_bytes(SALT_SIZE)


class WithdrawalOrchestrator:
    """
    Executes withdrawals that need a custody approval and a coordinator approval.

    Usage:
        orchestrator = WithdrawalOrchestrator(ledger, AuthorizationConfig.from_env())
        result = orchestrator.execute_withdrawal(sender, parameters)

    The orchestrator holds no state between calls; concurrent calls for the
    same withdrawal are tolerated.
    """

    def __init__(
        self,
        ledger: Ledger,
        config: AuthorizationConfig,
        salt_factory: Optional[Callable[[], bytes]] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.ledger = ledger
        self.config = config
        self._salt_factory = salt_factory or _random_salt
        self._sleep = sleep or time.sleep

    def approval_record_address(
        self,
        parameters: WithdrawalParameters,
        sender: Address,
        nonce: int
    ) -> Address:
        """
        Derive the approval record for a withdrawal.

        The record is keyed by the custody struct hash, so every attempt at
        the same withdrawal lands on the same record.
        """
        struct_hash = custody_struct_hash(
            parameters.collateral,
            sender,
            parameters.recipient,
            parameters.asset,
            parameters.request.amount,
            nonce,
        )
        address, _ = find_program_address(
            [APPROVAL_RECORD_SEED, bytes(parameters.collateral), bytes.fromhex(struct_hash)],
            self.config.program_id,
        )
        return address

    def submit_custody_approval(
        self,
        sender: Signer,
        parameters: WithdrawalParameters,
        collateral: CollateralAccount,
        approval_record: Address
    ) -> Optional[str]:
        """
        Sign the custody digest and record it in the approval record.

        Returns:
            The submission signature, or None if the ledger reported the
            approval as already recorded

        Raises:
            TransactionRejected: any rejection other than a duplicate approval
            ConfirmationTimeout: the submission was not confirmed in time
        """
        request = parameters.request
        salt = self._salt_factory()
        digest = custody_withdraw_digest(
            parameters.collateral,
            sender.public_key,
            parameters.recipient,
            parameters.asset,
            request.amount,
            collateral.admin_funds_nonce,
            salt,
        )
        entry = SignatureEntry(
            signer=sender.public_key,
            signature=sender.sign(digest),
            message=digest,
        )
        transaction = Transaction(
            fee_payer=sender.public_key,
            instructions=(
                create_signature_verification_instruction([entry], self.config.max_signatures),
                submit_signatures_instruction(
                    program_id=self.config.program_id,
                    collateral=parameters.collateral,
                    approval_record=approval_record,
                    rent_payer=sender.public_key,
                    sender=sender.public_key,
                    recipient=parameters.recipient,
                    asset=parameters.asset,
                    request=request,
                    salts=[salt],
                    target_nonce=collateral.admin_funds_nonce,
                    submission_variant=self.config.withdraw_submission_variant,
                ),
            ),
        )

        try:
            signature = self.ledger.send_transaction(transaction, [sender])
            self._await_confirmation(signature)
        except TransactionRejected as e:
            classified = classify_rejection(e, self.config.duplicate_approval_markers)
            if isinstance(classified, DuplicateApproval):
                audit_log.duplicate_approval(str(approval_record), e.reason)
                return None
            raise

        audit_log.approval_submitted(str(approval_record), signature)
        return signature

    def resolve_approver(self, collateral: CollateralAccount) -> Tuple[CoordinatorAccount, Address]:
        """
        Select the coordinator approver whose signature is verified.

        Raises:
            NoApproverConfigured: the coordinator lists no approvers
        """
        coordinator = self.ledger.fetch_coordinator(collateral.coordinator)
        if not coordinator.approvers:
            raise NoApproverConfigured(str(coordinator.address))
        approver = coordinator.approvers[0]
        audit_log.coordinator_resolved(str(coordinator.address), str(approver))
        return coordinator, approver

    def _await_confirmation(self, signature: str) -> SignatureStatus:
        polls = self.config.max_confirmation_polls
        for poll in range(polls):
            status = self.ledger.get_signature_status(signature)
            if status is not None:
                if status.err is not None:
                    raise TransactionRejected(status.err, status.logs, signature)
                if status.confirmed:
                    return status
            if poll < polls - 1:
                self._sleep(self.config.poll_interval_seconds)
        raise ConfirmationTimeout(signature, polls)

    def execute_withdrawal(self, sender: Signer, parameters: WithdrawalParameters) -> WithdrawalResult:
        """
        Run the full withdrawal protocol.

        Args:
            sender: custody administrator; also pays fees and rent
            parameters: withdrawal inputs including the coordinator signature

        Returns:
            WithdrawalResult once the withdrawal transaction is confirmed

        Raises:
            WithdrawAuthError subclasses, with `withdrawal_attempt` attached
        """
        attempt = WithdrawalAttempt(attempt_id=set_attempt_id())
        try:
            self._execute(sender, parameters, attempt)
        except Exception as e:
            last_state = attempt.state
            attempt.advance(WithdrawalState.FAILED)
            e.withdrawal_attempt = attempt
            audit_log.withdrawal_failed(last_state.value, e)
            raise
        return WithdrawalResult.from_attempt(attempt)

    def _execute(self, sender: Signer, parameters: WithdrawalParameters, attempt: WithdrawalAttempt):
        request = parameters.request
        audit_log.withdrawal_started(
            str(parameters.collateral),
            str(sender.public_key),
            str(parameters.recipient),
            request.amount,
        )

        collateral = self.ledger.fetch_collateral(parameters.collateral)
        # The deposit address may itself be program-derived
        source_token_account = get_associated_token_address(
            parameters.deposit_address, parameters.asset, allow_owner_off_curve=True
        )
        destination_token_account = self.ledger.ensure_token_account(
            sender, parameters.recipient, parameters.asset
        )
        logger.debug("Source token account %s, destination %s",
                     source_token_account, destination_token_account)

        # Custody approval
        record_address = self.approval_record_address(
            parameters, sender.public_key, collateral.admin_funds_nonce
        )
        attempt.approval_record = record_address
        record: Optional[ApprovalRecord] = self.ledger.fetch_approval_record(record_address)
        already_approved = record is not None and record.has_approved(sender.public_key)
        attempt.advance(WithdrawalState.CUSTODY_APPROVAL_CHECKED)
        audit_log.approval_checked(str(record_address), already_approved)

        if not already_approved:
            signature = self.submit_custody_approval(sender, parameters, collateral, record_address)
            attempt.approval_signature = signature
            attempt.duplicate_approval = signature is None
            attempt.advance(WithdrawalState.CUSTODY_APPROVAL_SUBMITTED)

        # Coordinator approval
        coordinator, approver = self.resolve_approver(collateral)
        attempt.approver = approver
        attempt.advance(WithdrawalState.COORDINATOR_RESOLVED)

        digest = coordinator_withdraw_digest(
            parameters.collateral,
            coordinator.address,
            sender.public_key,
            parameters.recipient,
            parameters.asset,
            request.amount,
            collateral.admin_funds_nonce,
            request.expires_at,
            request.coordinator_salt,
        )
        if self.config.verify_coordinator_signature and not verify_signature(
            digest, parameters.coordinator_signature, approver
        ):
            raise CoordinatorSignatureMismatch(str(approver))

        entry = SignatureEntry(
            signer=approver,
            signature=parameters.coordinator_signature,
            message=digest,
        )
        transaction = Transaction(
            fee_payer=sender.public_key,
            instructions=(
                create_signature_verification_instruction([entry], self.config.max_signatures),
                withdraw_collateral_asset_instruction(
                    program_id=self.config.program_id,
                    sender=sender.public_key,
                    recipient=parameters.recipient,
                    asset=parameters.asset,
                    collateral_token_account=source_token_account,
                    recipient_token_account=destination_token_account,
                    coordinator=coordinator.address,
                    collateral=parameters.collateral,
                    approval_record=record_address,
                    request=request,
                ),
            ),
        )

        signature = self.ledger.send_transaction(transaction, [sender])
        attempt.withdrawal_signature = signature
        attempt.advance(WithdrawalState.TRANSACTION_SUBMITTED)
        audit_log.withdrawal_submitted(signature)

        self._await_confirmation(signature)
        attempt.advance(WithdrawalState.CONFIRMED)
        audit_log.withdrawal_confirmed(signature)
