"""
Withdrawal Orchestrator Test Suite

Runs the two-approval protocol against InMemoryLedger.

Critical properties tested:
    an existing custody approval is never resubmitted
    a lost approval race is not an error
    every other failure surfaces unchanged
"""

import unittest

from withdrawauth import (
    AccountNotFound,
    AuthorizationConfig,
    ConfirmationTimeout,
    CoordinatorSignatureMismatch,
    InMemoryLedger,
    KeypairSigner,
    NoApproverConfigured,
    TransactionRejected,
    WithdrawRequest,
    WithdrawalOrchestrator,
    WithdrawalParameters,
    WithdrawalState,
    coordinator_withdraw_digest,
    custody_withdraw_digest,
    verify_signature_verification_data,
)
from withdrawauth.ed25519_program import parse_signature_verification_data

NONCE = 4
AMOUNT = 1000000
EXPIRES_AT = 1763066371
COORDINATOR_SALT = bytes([
    233, 173, 254, 8, 92, 182, 238, 44, 197, 203, 46, 217, 52, 2, 101, 34,
    53, 98, 96, 114, 235, 77, 203, 151, 182, 120, 234, 66, 7, 21, 52, 21,
])
CUSTODY_SALT = bytes([42]) * 32


def key(seed: int) -> KeypairSigner:
    return KeypairSigner.from_seed(bytes([seed]) * 32)


class StaleApprovalLedger(InMemoryLedger):
    """Reports no approval record, as a read racing a concurrent submission would."""

    def fetch_approval_record(self, address):
        return None


class OrchestratorTestCase(unittest.TestCase):

    ledger_class = InMemoryLedger

    def setUp(self):
        self.program_id = key(1).public_key
        self.collateral = key(2).public_key
        self.coordinator = key(3).public_key
        self.asset = key(4).public_key
        self.recipient = key(5).public_key
        self.approver = key(6)
        self.admin = key(7)
        self.sleeps = []

        self.ledger = self.ledger_class(self.program_id)
        self.ledger.add_collateral(self.collateral, admin_funds_nonce=NONCE, coordinator=self.coordinator)
        self.ledger.add_coordinator(self.coordinator, approvers=[self.approver.public_key])

    def make_orchestrator(self, **config):
        return WithdrawalOrchestrator(
            self.ledger,
            AuthorizationConfig(program_id=self.program_id, **config),
            salt_factory=lambda: CUSTODY_SALT,
            sleep=self.sleeps.append,
        )

    def make_parameters(self, coordinator_signer=None) -> WithdrawalParameters:
        signer = coordinator_signer or self.approver
        digest = coordinator_withdraw_digest(
            self.collateral, self.coordinator, self.admin.public_key, self.recipient, self.asset,
            AMOUNT, NONCE, EXPIRES_AT, COORDINATOR_SALT,
        )
        return WithdrawalParameters(
            collateral=self.collateral,
            deposit_address=self.collateral,
            recipient=self.recipient,
            asset=self.asset,
            request=WithdrawRequest(amount=AMOUNT, expires_at=EXPIRES_AT, coordinator_salt=COORDINATOR_SALT),
            coordinator_signature=signer.sign(digest),
        )

    def record_address(self, orchestrator, parameters):
        return orchestrator.approval_record_address(parameters, self.admin.public_key, NONCE)


class TestHappyPath(OrchestratorTestCase):

    def test_full_withdrawal(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()

        result = orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertEqual(result.states, (
            WithdrawalState.START,
            WithdrawalState.CUSTODY_APPROVAL_CHECKED,
            WithdrawalState.CUSTODY_APPROVAL_SUBMITTED,
            WithdrawalState.COORDINATOR_RESOLVED,
            WithdrawalState.TRANSACTION_SUBMITTED,
            WithdrawalState.CONFIRMED,
        ))
        self.assertTrue(result.approval_submitted)
        self.assertFalse(result.duplicate_approval)
        self.assertIsNotNone(result.approval_signature)
        self.assertEqual(result.approver, self.approver.public_key)
        self.assertEqual(len(self.ledger.sent_transactions), 2)

        record = self.ledger.fetch_approval_record(self.record_address(orchestrator, parameters))
        self.assertTrue(record.has_approved(self.admin.public_key))
        self.assertEqual(result.approval_record, record.address)

        self.assertEqual(len(self.ledger.withdrawals), 1)
        withdrawal = self.ledger.withdrawals[0]
        self.assertEqual(withdrawal.amount, AMOUNT)
        self.assertEqual(withdrawal.recipient, self.recipient)
        self.assertEqual(withdrawal.signature, result.signature)

    def test_custody_approval_transaction(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()
        orchestrator.execute_withdrawal(self.admin, parameters)

        approval_tx = self.ledger.sent_transactions[0]
        verification, submit = approval_tx.instructions
        self.assertEqual(approval_tx.fee_payer, self.admin.public_key)
        self.assertTrue(verify_signature_verification_data(verification.data))

        entry = parse_signature_verification_data(verification.data)[0]
        self.assertEqual(entry.signer, self.admin.public_key)
        self.assertEqual(entry.message, custody_withdraw_digest(
            self.collateral, self.admin.public_key, self.recipient, self.asset,
            AMOUNT, NONCE, CUSTODY_SALT,
        ))
        # Salts vector follows the discriminator
        self.assertEqual(submit.data[12:44], CUSTODY_SALT)
        self.assertEqual(submit.accounts[1].pubkey, self.record_address(orchestrator, parameters))

    def test_withdrawal_transaction(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()
        orchestrator.execute_withdrawal(self.admin, parameters)

        verification, withdraw = self.ledger.sent_transactions[1].instructions
        entry = parse_signature_verification_data(verification.data)[0]
        self.assertEqual(entry.signer, self.approver.public_key)
        self.assertEqual(entry.signature, parameters.coordinator_signature)
        self.assertEqual(withdraw.program_id, self.program_id)
        self.assertEqual(withdraw.accounts[5].pubkey, self.coordinator)
        self.assertTrue(self.ledger.has_token_account(withdraw.accounts[4].pubkey))

    def test_confirmation_polling(self):
        self.ledger.confirmation_delay = 2
        orchestrator = self.make_orchestrator(max_confirmation_polls=5, poll_interval_seconds=0.25)

        orchestrator.execute_withdrawal(self.admin, self.make_parameters())

        # Two pending polls for each of the two transactions
        self.assertEqual(self.sleeps, [0.25] * 4)


class TestIdempotence(OrchestratorTestCase):

    def test_existing_approval_not_resubmitted(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()
        self.ledger.add_approval(self.record_address(orchestrator, parameters), self.admin.public_key)

        result = orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertNotIn(WithdrawalState.CUSTODY_APPROVAL_SUBMITTED, result.states)
        self.assertIsNone(result.approval_signature)
        self.assertEqual(len(self.ledger.sent_transactions), 1)
        self.assertEqual(len(self.ledger.withdrawals), 1)

    def test_other_signer_approval_does_not_count(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()
        self.ledger.add_approval(self.record_address(orchestrator, parameters), key(99).public_key)

        result = orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertTrue(result.approval_submitted)
        self.assertEqual(len(self.ledger.sent_transactions), 2)

    def test_repeat_execution_reuses_approval(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()

        first = orchestrator.execute_withdrawal(self.admin, parameters)
        second = orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertTrue(first.approval_submitted)
        self.assertFalse(second.approval_submitted)
        self.assertEqual(first.approval_record, second.approval_record)
        self.assertEqual(len(self.ledger.sent_transactions), 3)


class TestDuplicateApprovalRace(OrchestratorTestCase):

    ledger_class = StaleApprovalLedger

    def test_lost_race_is_success(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()
        self.ledger.add_approval(self.record_address(orchestrator, parameters), self.admin.public_key)

        result = orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertTrue(result.duplicate_approval)
        self.assertIsNone(result.approval_signature)
        self.assertEqual(result.states[-1], WithdrawalState.CONFIRMED)
        self.assertEqual(len(self.ledger.sent_transactions), 2)
        self.assertEqual(len(self.ledger.withdrawals), 1)

    def test_duplicate_marker_is_configurable(self):
        orchestrator = self.make_orchestrator(duplicate_approval_markers=("something else",))
        parameters = self.make_parameters()
        self.ledger.add_approval(self.record_address(orchestrator, parameters), self.admin.public_key)

        with self.assertRaises(TransactionRejected) as ctx:
            orchestrator.execute_withdrawal(self.admin, parameters)
        self.assertIn("SignatureAlreadySubmitted", ctx.exception.reason)


class TestFailures(OrchestratorTestCase):

    def test_genuine_rejection_surfaces(self):
        orchestrator = self.make_orchestrator()
        self.ledger.reject_next("Transfer: insufficient lamports 0, need 1461600")

        with self.assertRaises(TransactionRejected) as ctx:
            orchestrator.execute_withdrawal(self.admin, self.make_parameters())

        self.assertEqual(ctx.exception.reason, "Transfer: insufficient lamports 0, need 1461600")
        attempt = ctx.exception.withdrawal_attempt
        self.assertEqual(attempt.states[-2:], [
            WithdrawalState.CUSTODY_APPROVAL_CHECKED,
            WithdrawalState.FAILED,
        ])
        self.assertEqual(self.ledger.withdrawals, [])

    def test_execution_error_surfaces(self):
        orchestrator = self.make_orchestrator()
        self.ledger.fail_next_execution("InstructionError: custom program error: 0x1")

        with self.assertRaises(TransactionRejected) as ctx:
            orchestrator.execute_withdrawal(self.admin, self.make_parameters())

        self.assertEqual(ctx.exception.reason, "InstructionError: custom program error: 0x1")
        self.assertIsNotNone(ctx.exception.signature)

    def test_no_approver_configured(self):
        self.ledger.add_coordinator(self.coordinator, approvers=[])
        orchestrator = self.make_orchestrator()

        with self.assertRaises(NoApproverConfigured):
            orchestrator.execute_withdrawal(self.admin, self.make_parameters())

        # The custody approval was already recorded
        self.assertEqual(len(self.ledger.sent_transactions), 1)

    def test_first_approver_is_used(self):
        self.ledger.add_coordinator(self.coordinator, approvers=[self.approver.public_key, key(50).public_key])
        result = self.make_orchestrator().execute_withdrawal(self.admin, self.make_parameters())
        self.assertEqual(result.approver, self.approver.public_key)

    def test_coordinator_signature_mismatch(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters(coordinator_signer=key(60))

        with self.assertRaises(CoordinatorSignatureMismatch) as ctx:
            orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertEqual(ctx.exception.withdrawal_attempt.states[-2], WithdrawalState.COORDINATOR_RESOLVED)
        self.assertEqual(len(self.ledger.sent_transactions), 1)

    def test_unchecked_coordinator_signature_rejected_by_ledger(self):
        orchestrator = self.make_orchestrator(verify_coordinator_signature=False)
        parameters = self.make_parameters(coordinator_signer=key(60))

        with self.assertRaises(TransactionRejected) as ctx:
            orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertIn("invalid Ed25519 signature", ctx.exception.reason)
        self.assertEqual(len(self.ledger.sent_transactions), 2)
        self.assertEqual(self.ledger.withdrawals, [])

    def test_confirmation_timeout(self):
        self.ledger.stall_confirmations = True
        orchestrator = self.make_orchestrator(max_confirmation_polls=3, poll_interval_seconds=0.5)

        with self.assertRaises(ConfirmationTimeout) as ctx:
            orchestrator.execute_withdrawal(self.admin, self.make_parameters())

        self.assertEqual(ctx.exception.polls, 3)
        self.assertEqual(self.sleeps, [0.5, 0.5])

    def test_unknown_collateral(self):
        orchestrator = self.make_orchestrator()
        parameters = self.make_parameters()
        self.ledger = InMemoryLedger(self.program_id)
        orchestrator.ledger = self.ledger

        with self.assertRaises(AccountNotFound) as ctx:
            orchestrator.execute_withdrawal(self.admin, parameters)

        self.assertEqual(ctx.exception.withdrawal_attempt.states, [
            WithdrawalState.START,
            WithdrawalState.FAILED,
        ])
        self.assertEqual(self.ledger.sent_transactions, [])


if __name__ == "__main__":
    unittest.main()
