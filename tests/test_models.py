"""
Signing Service Response Test Suite
"""

import base64
import unittest

from pydantic import ValidationError

from withdrawauth import Address, InvalidEntrySize
from withdrawauth.models import DigestRequest, SignatureEntryModel, SigningServiceResponse

SALT = [
    233, 173, 254, 8, 92, 182, 238, 44, 197, 203, 46, 217, 52, 2, 101, 34,
    53, 98, 96, 114, 235, 77, 203, 151, 182, 120, 234, 66, 7, 21, 52, 21,
]
SIGNATURE = "PXJVrYqp6PxC/L0YC/0DDI6X4axX2nQpjx/abbGvkQy150kFcMFq5pNQF551/YjJn8TP4KM9NTOGvx5MkTPlDg=="

RESPONSE = {
    "expiresAt": "2025-11-13T20:39:31.000Z",
    "parameters": [
        "3eZDvw9tgCEPqprPWH5PCM47dQ1yvVTECQkzdqnCZv16",
        "CcuoBwMZJgupcdx81m3vYqBongw2PhhZ4yiYA2jo3K5",
        "1000000",
        "4iu37ZckR6MvJhYF7jbAcva3e6io29ABP1b3F7FpBbcT",
        1763066371,
        SALT,
        SIGNATURE,
    ],
}


class TestSigningServiceResponse(unittest.TestCase):

    def test_parse(self):
        parameters = SigningServiceResponse(**RESPONSE).to_withdrawal_parameters()

        self.assertEqual(parameters.collateral, Address.from_base58(RESPONSE["parameters"][0]))
        self.assertEqual(parameters.asset, Address.from_base58(RESPONSE["parameters"][1]))
        self.assertEqual(parameters.recipient, Address.from_base58(RESPONSE["parameters"][3]))
        self.assertEqual(parameters.deposit_address, parameters.collateral)
        self.assertEqual(parameters.request.amount, 1000000)
        self.assertEqual(parameters.request.expires_at, 1763066371)
        self.assertEqual(parameters.request.coordinator_salt, bytes(SALT))
        self.assertEqual(parameters.coordinator_signature, base64.b64decode(SIGNATURE))
        self.assertEqual(len(parameters.coordinator_signature), 64)

    def test_expiry_timestamp_parsed(self):
        response = SigningServiceResponse(**RESPONSE)
        self.assertEqual(int(response.expiresAt.timestamp()), 1763066371)

    def test_base64_salt(self):
        data = dict(RESPONSE)
        params = list(RESPONSE["parameters"])
        params[5] = base64.b64encode(bytes(SALT)).decode()
        data["parameters"] = params

        parameters = SigningServiceResponse(**data).to_withdrawal_parameters()
        self.assertEqual(parameters.request.coordinator_salt, bytes(SALT))

    def test_explicit_deposit_address(self):
        deposit = "4iu37ZckR6MvJhYF7jbAcva3e6io29ABP1b3F7FpBbcT"
        parameters = SigningServiceResponse(**RESPONSE).to_withdrawal_parameters(deposit)
        self.assertEqual(parameters.deposit_address, Address.from_base58(deposit))

    def test_wrong_parameter_count(self):
        data = dict(RESPONSE)
        data["parameters"] = RESPONSE["parameters"][:6]
        with self.assertRaises(ValidationError):
            SigningServiceResponse(**data)

    def test_short_signature(self):
        data = dict(RESPONSE)
        params = list(RESPONSE["parameters"])
        params[6] = base64.b64encode(bytes(63)).decode()
        data["parameters"] = params
        with self.assertRaises(InvalidEntrySize):
            SigningServiceResponse(**data).to_withdrawal_parameters()

    def test_bad_salt_bytes(self):
        data = dict(RESPONSE)
        params = list(RESPONSE["parameters"])
        params[5] = SALT[:-1] + [256]
        data["parameters"] = params
        with self.assertRaises(ValueError):
            SigningServiceResponse(**data).to_withdrawal_parameters()


class TestInputModels(unittest.TestCase):

    def test_digest_request_defaults(self):
        req = DigestRequest(
            collateral="a", sender="b", recipient="c", asset="d",
            amount=1, nonce=2, salt="0x" + "00" * 32,
        )
        self.assertEqual(req.kind, "custody")
        self.assertEqual(req.salt_bytes(), bytes(32))

    def test_digest_request_rejects_unknown_kind(self):
        with self.assertRaises(ValidationError):
            DigestRequest(
                kind="other", collateral="a", sender="b", recipient="c", asset="d",
                amount=1, nonce=2, salt="00",
            )

    def test_signature_entry_model(self):
        model = SignatureEntryModel(
            signer="11111111111111111111111111111111",
            signature="11" * 64,
            message="22" * 32,
        )
        entry = model.to_entry()
        self.assertEqual(entry.signature, bytes([0x11]) * 64)
        self.assertEqual(entry.message, bytes([0x22]) * 32)


if __name__ == "__main__":
    unittest.main()
