from __future__ import annotations

import unittest
import uuid
from dataclasses import replace

from market_testkit import ESCROW_ADDRESS, MarketAppTestCase

from marketescrow.models import AuditLog, CryptoIntent, Dispute
from marketescrow.services.crypto_bridge import REFUND_METHOD, order_key

BUYER_WALLET = "0x" + "b1" * 20
SELLER_WALLET = "0x" + "5e" * 20
TX_HASH = "0x" + "ab" * 32


def confirm_deposit(case, oid: str, buyer: int) -> dict:
    res = case.post("/api/market/usdc/deposit-intent", buyer, order_id=oid)
    case.assertEqual(res.status_code, 200, res.get_json())
    res = case.post(
        "/api/market/admin/usdc/intent-status",
        order_id=oid,
        intent_type="DEPOSIT",
        status="CONFIRMED",
        tx_hash=TX_HASH,
    )
    case.assertEqual(res.status_code, 200, res.get_json())
    case.assertEqual(res.get_json()["order"]["status"], "IN_ESCROW")
    return res.get_json()["order"]


class OrderKeyTestCase(unittest.TestCase):
    def test_keccak_of_empty_string(self):
        self.assertEqual(
            order_key(""),
            "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470",
        )

    def test_deterministic_and_distinct(self):
        oid = str(uuid.uuid4())
        key = order_key(oid)
        self.assertEqual(key, order_key(oid))
        self.assertRegex(key, r"^0x[0-9a-f]{64}$")
        self.assertNotEqual(key, order_key(str(uuid.uuid4())))


class UsdcEscrowBridgeTestCase(MarketAppTestCase):
    def _usdc_order(self, *, price_minor: int = 12345678, category="service", delivery_type="digital") -> tuple[str, int, int]:
        chain = self.seed_chain()
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        self.seed_crypto_wallet(seller, SELLER_WALLET, chain)
        listing = self.seed_listing(
            seller,
            price_minor=price_minor,
            currency="USDC",
            category=category,
            delivery_type=delivery_type,
        )
        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": listing, "buyer_wallet": BUYER_WALLET},
            headers=self.auth(buyer),
        )
        self.assertEqual(res.status_code, 201, res.get_json())
        body = res.get_json()
        self.assertEqual(body["order"]["currency"], "USDC")
        self.assertEqual(body["order"]["status"], "CREATED")
        self.assertEqual(body["crypto"]["order_key"], order_key(body["order"]["id"]))
        return body["order"]["id"], buyer, seller

    def test_deposit_intent_amounts_and_fee(self):
        oid, buyer, seller = self._usdc_order(price_minor=12345678)
        res = self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid)
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json()
        self.assertEqual(body["amount_units"], "12.345678")
        self.assertEqual(body["amount_raw"], "12345678")
        self.assertEqual(body["fee_bps"], 50)
        # 12345678 * 50 / 10000 = 61728.39, floored
        self.assertEqual(body["buyer_fee_raw"], "61728")
        self.assertEqual(body["buyer_total_raw"], "12407406")
        self.assertEqual(body["escrow_address"], ESCROW_ADDRESS)
        self.assertEqual(body["seller_wallet"], SELLER_WALLET)
        self.assertEqual(body["contract_method"], "deposit(bytes32 orderKey, address seller, uint256 amount)")

        with self.app.app_context():
            intent = CryptoIntent.query.filter_by(order_id=oid, intent_type="DEPOSIT").first()
            self.assertEqual(intent.status, "CREATED")
            self.assertEqual(intent.amount_raw, "12345678")

    def test_deposit_intent_guards(self):
        oid, buyer, seller = self._usdc_order()
        res = self.post("/api/market/usdc/deposit-intent", seller, order_id=oid)
        self.assertEqual(res.status_code, 403)
        res = self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid, chain="polygon")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "ChainMismatch")

    def test_deposit_intent_requires_created_order(self):
        oid, buyer, seller = self._usdc_order()
        self.assertEqual(self.post("/api/market/orders/cancel", buyer, order_id=oid).status_code, 200)
        res = self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "WrongStatus")
        with self.app.app_context():
            self.assertIsNone(CryptoIntent.query.filter_by(order_id=oid, intent_type="DEPOSIT").first())

        funded, buyer, seller = self._usdc_order()
        confirm_deposit(self, funded, buyer)
        res = self.post("/api/market/usdc/deposit-intent", buyer, order_id=funded)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "WrongStatus")

    def test_usdc_order_rejects_ngn_listing_and_missing_seller_wallet(self):
        self.seed_chain()
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        ngn_listing = self.seed_listing(seller, currency="NGN")
        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": ngn_listing, "buyer_wallet": BUYER_WALLET},
            headers=self.auth(buyer),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "WrongCurrency")

        usdc_listing = self.seed_listing(seller, currency="USDC", price_minor=1000000)
        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": usdc_listing, "buyer_wallet": BUYER_WALLET},
            headers=self.auth(buyer),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "SellerWalletMissing")

        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": usdc_listing, "buyer_wallet": "not-an-address"},
            headers=self.auth(buyer),
        )
        self.assertEqual(res.status_code, 400)

    def test_confirmed_intents_drive_the_order(self):
        oid, buyer, seller = self._usdc_order()
        self.assertEqual(self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid).status_code, 200)

        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="DEPOSIT",
            status="CONFIRMED",
            tx_hash=TX_HASH,
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["intent"]["status"], "CONFIRMED")
        self.assertEqual(res.get_json()["order"]["status"], "IN_ESCROW")
        self.assertEqual(res.get_json()["order"]["version"], 1)

        res = self.post("/api/market/usdc/release-intent", buyer, order_id=oid)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["contract_method"], "release(bytes32 orderKey)")
        self.assertEqual(res.get_json()["args"], [order_key(oid)])

        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="RELEASE",
            status="CONFIRMED",
            tx_hash="0x" + "cd" * 32,
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        order = res.get_json()["order"]
        self.assertEqual(order["status"], "RELEASED")
        self.assertEqual(order["version"], 3)
        self.assertTrue(order["delivered_at"])

        # CONFIRMED is terminal
        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="DEPOSIT",
            status="FAILED",
            failure_reason="reorg",
        )
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "IntentTransitionInvalid")

    def test_intent_status_validation(self):
        oid, buyer, seller = self._usdc_order()
        res = self.post("/api/market/admin/usdc/intent-status", order_id=oid, intent_type="RELEASE", status="SUBMITTED", tx_hash=TX_HASH)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "IntentNotFound")

        self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid)
        res = self.post("/api/market/admin/usdc/intent-status", order_id=oid, intent_type="DEPOSIT", status="CONFIRMED")
        self.assertEqual(res.status_code, 400)
        res = self.post("/api/market/admin/usdc/intent-status", order_id=oid, intent_type="DEPOSIT", status="SUBMITTED", tx_hash="0x1234")
        self.assertEqual(res.status_code, 400)
        res = self.post("/api/market/admin/usdc/intent-status", order_id=oid, intent_type="DEPOSIT", status="FAILED")
        self.assertEqual(res.status_code, 400)

        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="DEPOSIT",
            status="FAILED",
            failure_reason="user rejected",
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["intent"]["failure_reason"], "user rejected")
        self.assertEqual(res.get_json()["order"]["status"], "CREATED")
        # a failed deposit can be re-created
        self.assertEqual(self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid).status_code, 200)

    def test_physical_release_requires_verified_otp(self):
        oid, buyer, seller = self._usdc_order(category="product", delivery_type="physical")
        self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid)
        self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="DEPOSIT",
            status="CONFIRMED",
            tx_hash=TX_HASH,
        )
        res = self.post("/api/market/usdc/release-intent", buyer, order_id=oid)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "OtpNotVerified")

    def test_refund_intent_without_signer_returns_call_parameters(self):
        oid, buyer, seller = self._usdc_order()
        confirm_deposit(self, oid, buyer)
        res = self.post("/api/market/admin/usdc/refund-intent", order_id=oid, reason="seller vanished")
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json()
        self.assertEqual(body["status"], "CREATED")
        self.assertEqual(body["call"]["method"], REFUND_METHOD)
        self.assertEqual(body["call"]["args"], [order_key(oid)])
        self.assertEqual(body["call"]["escrow_address"], ESCROW_ADDRESS)
        with self.app.app_context():
            intent = CryptoIntent.query.filter_by(order_id=oid, intent_type="REFUND").first()
            self.assertEqual(intent.status, "CREATED")
            self.assertEqual(intent.to_wallet, BUYER_WALLET)

    def test_refund_intent_requires_refundable_order(self):
        oid, buyer, seller = self._usdc_order()
        res = self.post("/api/market/admin/usdc/refund-intent", order_id=oid, reason="never paid")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "WrongStatus")

        shipped, buyer, seller = self._usdc_order(category="product", delivery_type="physical")
        confirm_deposit(self, shipped, buyer)
        res = self.post("/api/market/orders/out-for-delivery", seller, order_id=shipped)
        self.assertEqual(res.status_code, 200, res.get_json())
        res = self.post("/api/market/admin/usdc/refund-intent", order_id=shipped, reason="courier lost it")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "WrongStatus")
        with self.app.app_context():
            self.assertIsNone(CryptoIntent.query.filter_by(order_id=shipped, intent_type="REFUND").first())

    def test_pending_refund_blocks_dispatch(self):
        oid, buyer, seller = self._usdc_order(category="product", delivery_type="physical")
        confirm_deposit(self, oid, buyer)
        res = self.post("/api/market/admin/usdc/refund-intent", order_id=oid, reason="buyer changed mind")
        self.assertEqual(res.status_code, 200, res.get_json())

        res = self.post("/api/market/orders/out-for-delivery", seller, order_id=oid)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "RefundPending")

        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="REFUND",
            status="CONFIRMED",
            tx_hash="0x" + "ef" * 32,
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "REFUNDED")

    def test_chain_listing(self):
        self.seed_chain()
        res = self.client.get("/api/market/chains")
        self.assertEqual(res.status_code, 200)
        chains = [c["chain"] for c in res.get_json()["items"]]
        self.assertIn("base-sepolia", chains)


class UsdcRefundSignerTestCase(MarketAppTestCase):
    settings = replace(MarketAppTestCase.settings, integrations_mode="sandbox", signer_provider="mock")

    def test_refund_is_submitted_through_the_signer(self):
        chain = self.seed_chain()
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        self.seed_crypto_wallet(seller, SELLER_WALLET, chain)
        listing = self.seed_listing(seller, price_minor=5000000, currency="USDC", category="service", delivery_type="digital")
        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": listing, "buyer_wallet": BUYER_WALLET},
            headers=self.auth(buyer),
        )
        oid = res.get_json()["order"]["id"]
        self.assertEqual(self.post("/api/market/usdc/deposit-intent", buyer, order_id=oid).status_code, 200)
        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="DEPOSIT",
            status="CONFIRMED",
            tx_hash=TX_HASH,
        )
        self.assertEqual(res.get_json()["order"]["status"], "IN_ESCROW")

        res = self.post("/api/market/admin/usdc/refund-intent", order_id=oid, reason="duplicate payment")
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json()
        self.assertEqual(body["status"], "SUBMITTED")
        self.assertRegex(body["tx_hash"], r"^0x[0-9a-f]{64}$")

        with self.app.app_context():
            intent = CryptoIntent.query.filter_by(order_id=oid, intent_type="REFUND").first()
            self.assertEqual(intent.status, "SUBMITTED")
            self.assertEqual(intent.tx_hash, body["tx_hash"])
            actions = {r.action for r in AuditLog.query.filter_by(entity_id=oid).all()}
            self.assertIn("USDC_REFUND_SUBMITTED", actions)

        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="REFUND",
            status="CONFIRMED",
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "REFUNDED")

    def test_confirmed_refund_settles_an_open_dispute(self):
        chain = self.seed_chain()
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        self.seed_crypto_wallet(seller, SELLER_WALLET, chain)
        listing = self.seed_listing(seller, price_minor=2000000, currency="USDC", category="service", delivery_type="in_person")
        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": listing, "buyer_wallet": BUYER_WALLET},
            headers=self.auth(buyer),
        )
        oid = res.get_json()["order"]["id"]
        confirm_deposit(self, oid, buyer)
        res = self.post("/api/market/disputes", buyer, order_id=oid, reason="seller never showed up")
        self.assertEqual(res.status_code, 201, res.get_json())

        res = self.post("/api/market/admin/usdc/refund-intent", order_id=oid, reason="no-show")
        self.assertEqual(res.status_code, 200, res.get_json())
        res = self.post(
            "/api/market/admin/usdc/intent-status",
            order_id=oid,
            intent_type="REFUND",
            status="CONFIRMED",
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "REFUNDED")

        with self.app.app_context():
            dispute = Dispute.query.filter_by(order_id=oid).first()
            self.assertEqual(dispute.status, "RESOLVED")
            self.assertEqual(dispute.resolution, "REFUND_TO_BUYER")
            self.assertIsNotNone(dispute.resolved_at)
            actions = {r.action for r in AuditLog.query.filter_by(entity_id=oid).all()}
            self.assertIn("DISPUTE_RESOLVED_REFUND", actions)
        res = self.client.get(f"/api/market/orders/{oid}/actions", headers=self.auth(buyer))
        self.assertFalse(res.get_json()["flags"]["open_dispute"])


class UsdcRefundMisconfiguredSignerTestCase(MarketAppTestCase):
    settings = replace(MarketAppTestCase.settings, integrations_mode="live", signer_provider="http")

    def test_misconfigured_signer_is_an_external_failure(self):
        chain = self.seed_chain()
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        self.seed_crypto_wallet(seller, SELLER_WALLET, chain)
        listing = self.seed_listing(seller, price_minor=1000000, currency="USDC", category="service", delivery_type="digital")
        res = self.client.post(
            "/api/market/usdc/orders",
            json={"listing_id": listing, "buyer_wallet": BUYER_WALLET},
            headers=self.auth(buyer),
        )
        oid = res.get_json()["order"]["id"]
        confirm_deposit(self, oid, buyer)

        res = self.post("/api/market/admin/usdc/refund-intent", order_id=oid)
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.get_json()["error"], "ExternalDependencyFailed")
        with self.app.app_context():
            self.assertIsNone(CryptoIntent.query.filter_by(order_id=oid, intent_type="REFUND").first())


if __name__ == "__main__":
    unittest.main()
