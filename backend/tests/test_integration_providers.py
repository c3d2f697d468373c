from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

import requests

from marketescrow.config import MarketSettings
from marketescrow.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from marketescrow.integrations.messaging.factory import build_messaging_provider, messaging_health
from marketescrow.integrations.messaging.termii_provider import TermiiMessagingProvider
from marketescrow.integrations.signer.base import EscrowCall
from marketescrow.integrations.signer.factory import build_escrow_signer
from marketescrow.integrations.signer.http_signer import HttpEscrowSigner
from marketescrow.integrations.signer.mock_signer import MockEscrowSigner


def _response(status: int, payload: dict) -> MagicMock:
    res = MagicMock()
    res.status_code = status
    res.content = b"{}"
    res.json.return_value = payload
    return res


def _call() -> EscrowCall:
    return EscrowCall(
        chain="base-sepolia",
        chain_id=84532,
        escrow_address="0x" + "e5" * 20,
        method="refund(bytes32 orderKey)",
        args=["0x" + "11" * 32],
        reference="refund:order-1",
    )


class ProviderFactoryTestCase(unittest.TestCase):
    def test_disabled_mode_builds_nothing(self):
        settings = MarketSettings()
        with self.assertRaises(IntegrationDisabledError):
            build_escrow_signer(settings)
        with self.assertRaises(IntegrationDisabledError):
            build_messaging_provider(settings)
        self.assertEqual(messaging_health(settings)["status"], "disabled")

    def test_mock_providers_are_sandbox_only(self):
        self.assertIsInstance(build_escrow_signer(MarketSettings(integrations_mode="sandbox")), MockEscrowSigner)
        with self.assertRaises(IntegrationMisconfiguredError):
            build_escrow_signer(MarketSettings(integrations_mode="live", signer_provider="mock"))
        with self.assertRaises(IntegrationMisconfiguredError):
            build_messaging_provider(MarketSettings(integrations_mode="live", sms_provider="mock"))

    def test_real_providers_need_credentials(self):
        with self.assertRaises(IntegrationMisconfiguredError):
            build_escrow_signer(MarketSettings(integrations_mode="live", signer_provider="http", signer_url="https://signer.test"))
        signer = build_escrow_signer(
            MarketSettings(
                integrations_mode="live",
                signer_provider="http",
                signer_url="https://signer.test/",
                signer_api_key="k",
            )
        )
        self.assertIsInstance(signer, HttpEscrowSigner)
        self.assertEqual(signer.base_url, "https://signer.test")

        settings = MarketSettings(integrations_mode="live", sms_provider="termii", termii_api_key="k")
        with self.assertRaises(IntegrationMisconfiguredError):
            build_messaging_provider(settings)
        health = messaging_health(settings)
        self.assertEqual(health["status"], "misconfigured")
        self.assertEqual(health["missing"], ["TERMII_SENDER_ID"])


class HttpEscrowSignerTestCase(unittest.TestCase):
    def test_success_returns_tx_hash(self):
        signer = HttpEscrowSigner(base_url="https://signer.test", api_key="key-1")
        tx = "0x" + "9f" * 32
        with patch("marketescrow.integrations.signer.http_signer.requests.post", return_value=_response(200, {"tx_hash": tx})) as post:
            result = signer.submit(_call())
        self.assertTrue(result.ok)
        self.assertEqual(result.tx_hash, tx)
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://signer.test/v1/transactions")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer key-1")
        self.assertEqual(kwargs["headers"]["Idempotency-Key"], "refund:order-1")
        self.assertEqual(kwargs["json"]["method"], "refund(bytes32 orderKey)")

    def test_error_mapping(self):
        signer = HttpEscrowSigner(base_url="https://signer.test", api_key="key-1")
        path = "marketescrow.integrations.signer.http_signer.requests.post"
        with patch(path, return_value=_response(401, {"error": "bad key"})):
            self.assertEqual(signer.submit(_call()).code, "SIGNER_AUTH_FAILED")
        with patch(path, return_value=_response(422, {"message": "already refunded"})):
            result = signer.submit(_call())
            self.assertEqual(result.code, "SIGNER_REJECTED")
            self.assertEqual(result.message, "already refunded")
        with patch(path, return_value=_response(200, {})):
            self.assertEqual(signer.submit(_call()).code, "SIGNER_BAD_RESPONSE")
        with patch(path, side_effect=requests.Timeout()):
            self.assertEqual(signer.submit(_call()).code, "SIGNER_DOWN")


class TermiiProviderTestCase(unittest.TestCase):
    def test_send_and_error_mapping(self):
        provider = TermiiMessagingProvider(api_key="k", sender_id="Market")
        path = "marketescrow.integrations.messaging.termii_provider.requests.post"
        with patch(path, return_value=_response(200, {"message_id": "1"})) as post:
            result = provider.send_sms(to="08030000001", message="hello", reference="otp:1")
        self.assertTrue(result.ok)
        self.assertEqual(post.call_args.kwargs["json"]["from"], "Market")
        with patch(path, return_value=_response(400, {"message": "Invalid sender id"})):
            self.assertEqual(provider.send_sms(to="0803", message="x").code, "TERMII_INVALID_SENDER")
        with patch(path, side_effect=requests.ConnectionError("down")):
            self.assertEqual(provider.send_sms(to="0803", message="x").code, "TERMII_PROVIDER_DOWN")


if __name__ == "__main__":
    unittest.main()
