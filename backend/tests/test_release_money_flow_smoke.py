from __future__ import annotations

import unittest

from market_testkit import MarketAppTestCase

from marketescrow.extensions import db
from marketescrow.models import AuditLog, EscrowLedger, Listing, Wallet, WalletTxn
from marketescrow.services.reconciliation_service import reconcile


class ReleaseMoneyFlowSmokeTestCase(MarketAppTestCase):
    def _balance(self, user_id: int) -> int:
        res = self.client.get("/api/market/wallet", headers=self.auth(user_id))
        self.assertEqual(res.status_code, 200)
        return int(res.get_json()["wallet"]["balance_minor"])

    def test_physical_order_lock_otp_release_pays_seller_less_fee(self):
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        listing = self.seed_listing(seller, price_minor=500000)
        self.fund_wallet(buyer, 500000)

        order = self.create_order(buyer, listing)
        self.assertEqual(order["status"], "CREATED")
        self.assertEqual(order["version"], 0)
        self.assertEqual(order["delivery_kind"], "PHYSICAL")
        oid = order["id"]

        res = self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=0)
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json()
        self.assertEqual(body["order"]["status"], "IN_ESCROW")
        self.assertEqual(body["order"]["version"], 1)
        self.assertEqual(int(body["wallet"]["balance_minor"]), 0)

        res = self.post("/api/market/orders/out-for-delivery", seller, order_id=oid, expected_version=1)
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json()
        self.assertEqual(body["order"]["version"], 2)
        self.assertTrue(body["otp_generated"])
        self.assertTrue(body["expires_at"])
        self.assertNotIn("otp", body)

        res = self.post("/api/market/orders/otp/generate", buyer, order_id=oid)
        self.assertEqual(res.status_code, 200, res.get_json())
        code = res.get_json()["otp"]
        self.assertRegex(code, r"^\d{6}$")

        res = self.post("/api/market/orders/otp/verify", seller, order_id=oid, code=code)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "DELIVERED")
        self.assertEqual(res.get_json()["order"]["version"], 3)

        res = self.post("/api/market/orders/confirm-received", buyer, order_id=oid, expected_version=3)
        self.assertEqual(res.status_code, 200, res.get_json())
        released = res.get_json()["order"]
        self.assertEqual(released["status"], "RELEASED")
        self.assertEqual(released["version"], 4)
        self.assertTrue(released["released_at"])

        self.assertEqual(self._balance(seller), 490000)
        self.assertEqual(self._balance(buyer), 0)

        with self.app.app_context():
            ledger = EscrowLedger.query.filter_by(order_id=oid).first()
            self.assertEqual(int(ledger.amount_locked_minor), 500000)
            self.assertEqual(int(ledger.fee_minor), 10000)
            ref = f"order:{oid}"
            self.assertEqual(WalletTxn.query.filter_by(reference=ref, kind="escrow_lock").count(), 1)
            self.assertEqual(WalletTxn.query.filter_by(reference=ref, kind="escrow_release").count(), 1)
            actions = [r.action for r in AuditLog.query.filter_by(entity_id=oid).all()]
            self.assertIn("ORDER_CREATED", actions)
            self.assertIn("OTP_VERIFIED", actions)
            self.assertEqual(actions.count("ORDER_STATUS_CHANGED"), 4)
            self.assertTrue(reconcile()["ok"])

    def test_insufficient_funds_leaves_order_untouched(self):
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        listing = self.seed_listing(seller, price_minor=200000)
        self.fund_wallet(buyer, 150000)
        oid = self.create_order(buyer, listing)["id"]

        res = self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=0)
        self.assertEqual(res.status_code, 402)
        body = res.get_json()
        self.assertEqual(body["error"], "InsufficientFunds")
        self.assertEqual(int(body["required_minor"]), 200000)

        detail = self.client.get(f"/api/market/orders/{oid}", headers=self.auth(buyer)).get_json()
        self.assertEqual(detail["order"]["status"], "CREATED")
        self.assertEqual(detail["order"]["version"], 0)
        self.assertIsNone(detail["escrow"])
        self.assertEqual(self._balance(buyer), 150000)

    def test_second_lock_is_rejected_without_double_charge(self):
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        listing = self.seed_listing(seller, price_minor=100000)
        self.fund_wallet(buyer, 300000)
        oid = self.create_order(buyer, listing)["id"]

        first = self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=0)
        self.assertEqual(first.status_code, 200)
        again = self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=1)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "WrongStatus")
        stale = self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=0)
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.get_json()["error"], "VersionConflict")
        self.assertEqual(int(stale.get_json()["current_version"]), 1)
        self.assertEqual(self._balance(buyer), 200000)

    def test_digital_approval_releases_in_one_step(self):
        seller = self.seed_user("Designer")
        buyer = self.seed_user("Buyer")
        listing = self.seed_listing(seller, price_minor=100000, category="service", delivery_type="digital")
        self.fund_wallet(buyer, 100000)
        oid = self.create_order(buyer, listing)["id"]
        self.assertEqual(self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=0).status_code, 200)

        res = self.post(
            "/api/market/orders/deliverable",
            seller,
            order_id=oid,
            storage_path_full="deliverables/full/logo.zip",
            storage_path_preview="deliverables/preview/logo.png",
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "DELIVERABLE_UPLOADED")

        detail = self.client.get(f"/api/market/orders/{oid}", headers=self.auth(buyer)).get_json()
        self.assertNotIn("storage_path_full", detail["deliverable"])

        res = self.post("/api/market/orders/approve-digital", buyer, order_id=oid, expected_version=2)
        self.assertEqual(res.status_code, 200, res.get_json())
        order = res.get_json()["order"]
        self.assertEqual(order["status"], "RELEASED")
        self.assertEqual(order["version"], 4)
        self.assertTrue(order["delivered_at"])
        self.assertEqual(self._balance(seller), 98000)

    def test_in_person_service_skips_otp_and_deliverable(self):
        seller = self.seed_user("Tutor")
        buyer = self.seed_user("Student")
        listing = self.seed_listing(seller, price_minor=50000, category="service", delivery_type="in_person")
        self.fund_wallet(buyer, 50000)
        oid = self.create_order(buyer, listing)["id"]
        self.assertEqual(self.post("/api/market/orders/checkout-wallet", buyer, order_id=oid, expected_version=0).status_code, 200)

        otp = self.post("/api/market/orders/out-for-delivery", seller, order_id=oid)
        self.assertEqual(otp.status_code, 400)
        self.assertEqual(otp.get_json()["error"], "UnsupportedDelivery")

        res = self.post("/api/market/orders/mark-delivered", seller, order_id=oid)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "DELIVERED")
        res = self.post("/api/market/orders/confirm-received", buyer, order_id=oid)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self._balance(seller), 49000)

    def test_cancel_restores_stock(self):
        seller = self.seed_user("Seller")
        buyer = self.seed_user("Buyer")
        listing = self.seed_listing(seller, price_minor=1000, stock_qty=3)
        oid = self.create_order(buyer, listing, quantity=2)["id"]

        over = self.client.post(
            "/api/market/orders",
            json={"listing_id": listing, "quantity": 2},
            headers=self.auth(buyer),
        )
        self.assertEqual(over.status_code, 400)
        self.assertEqual(over.get_json()["error"], "InsufficientStock")

        res = self.post("/api/market/orders/cancel", buyer, order_id=oid, expected_version=0)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["order"]["status"], "CANCELLED")
        with self.app.app_context():
            self.assertEqual(int(db.session.get(Listing, listing).stock_qty), 3)
            self.assertIsNone(Wallet.query.filter_by(user_id=seller).first())


if __name__ == "__main__":
    unittest.main()
