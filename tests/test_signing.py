"""
Signer and Error Classification Test Suite
"""

import unittest

from withdrawauth import (
    AwsKmsEd25519Signer,
    DuplicateApproval,
    KeypairSigner,
    TransactionRejected,
    classify_rejection,
    verify_signature,
)
from withdrawauth.config import DEFAULT_DUPLICATE_MARKERS


class FakeKmsClient:
    """Stands in for a boto3 KMS client."""

    def __init__(self, signer: KeypairSigner):
        self.signer = signer
        self.sign_calls = []

    def get_public_key(self, KeyId):
        # 12-byte DER prefix of an Ed25519 SubjectPublicKeyInfo
        prefix = bytes.fromhex("302a300506032b6570032100")
        return {"PublicKey": prefix + bytes(self.signer.public_key)}

    def sign(self, KeyId, Message, MessageType, SigningAlgorithm):
        self.sign_calls.append((KeyId, MessageType, SigningAlgorithm))
        return {"Signature": self.signer.sign(Message)}


class TestKeypairSigner(unittest.TestCase):

    def test_sign_and_verify(self):
        signer = KeypairSigner.generate()
        message = bytes(32)
        signature = signer.sign(message)
        self.assertEqual(len(signature), 64)
        self.assertTrue(verify_signature(message, signature, signer.public_key))
        self.assertFalse(verify_signature(b"\x01" * 32, signature, signer.public_key))

    def test_from_seed_is_deterministic(self):
        a = KeypairSigner.from_seed(bytes([1]) * 32)
        b = KeypairSigner.from_seed(bytes([1]) * 32)
        self.assertEqual(a.public_key, b.public_key)

    def test_secret_key_round_trip(self):
        signer = KeypairSigner.generate()
        restored = KeypairSigner.from_secret_key(signer.secret_key)
        self.assertEqual(restored.public_key, signer.public_key)

    def test_secret_key_mismatch(self):
        a = KeypairSigner.from_seed(bytes([1]) * 32)
        b = KeypairSigner.from_seed(bytes([2]) * 32)
        with self.assertRaises(ValueError):
            KeypairSigner.from_secret_key(a.secret_key[:32] + bytes(b.public_key))
        with self.assertRaises(ValueError):
            KeypairSigner.from_secret_key(bytes(63))

    def test_verify_rejects_malformed_key(self):
        signer = KeypairSigner.generate()
        self.assertFalse(verify_signature(bytes(32), signer.sign(bytes(32)), bytes(31)))


class TestAwsKmsSigner(unittest.TestCase):

    def test_signs_with_kms(self):
        local = KeypairSigner.from_seed(bytes([3]) * 32)
        client = FakeKmsClient(local)
        signer = AwsKmsEd25519Signer("alias/withdraw-admin", client=client)

        self.assertEqual(signer.public_key, local.public_key)
        signature = signer.sign(bytes(32))
        self.assertTrue(verify_signature(bytes(32), signature, signer.public_key))
        self.assertEqual(client.sign_calls, [("alias/withdraw-admin", "RAW", "ED25519_SHA_512")])


class TestClassifyRejection(unittest.TestCase):

    def test_reason_match(self):
        rejection = TransactionRejected("Allocate: account Address { .. } already in use")
        result = classify_rejection(rejection, DEFAULT_DUPLICATE_MARKERS)
        self.assertIsInstance(result, DuplicateApproval)
        self.assertIs(result.rejection, rejection)

    def test_log_match(self):
        rejection = TransactionRejected(
            "custom program error: 0x1770",
            logs=["Program log: AnchorError occurred. Error Code: SignatureAlreadySubmitted."],
        )
        self.assertIsInstance(classify_rejection(rejection, DEFAULT_DUPLICATE_MARKERS), DuplicateApproval)

    def test_other_rejection_unchanged(self):
        rejection = TransactionRejected("Transfer: insufficient lamports")
        self.assertIs(classify_rejection(rejection, DEFAULT_DUPLICATE_MARKERS), rejection)

    def test_empty_marker_ignored(self):
        rejection = TransactionRejected("anything")
        self.assertIs(classify_rejection(rejection, ("",)), rejection)


if __name__ == "__main__":
    unittest.main()
