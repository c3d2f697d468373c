from __future__ import annotations

import unittest

from market_testkit import MarketAppTestCase


class RequestIdHeadersTestCase(MarketAppTestCase):
    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        rid = (res.headers.get("X-Request-ID") or "").strip()
        self.assertTrue(rid)
        self.assertRegex(rid, r"^[0-9a-f]{32}$")

    def test_echoes_request_id_when_provided(self):
        incoming = "rid-test-123"
        res = self.client.get("/api/health", headers={"X-Request-ID": incoming})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("X-Request-ID"), incoming)

    def test_error_payload_includes_trace_id(self):
        res = self.client.post("/api/market/orders", json={"listing_id": 1})
        self.assertEqual(res.status_code, 401)
        body = res.get_json(force=True)
        self.assertIsInstance(body, dict)
        self.assertIn("trace_id", body)
        self.assertEqual((body.get("trace_id") or "").strip(), (res.headers.get("X-Request-ID") or "").strip())

    def test_health_reports_database_and_sms(self):
        body = self.client.get("/api/health").get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["db"], "ok")
        self.assertEqual(body["sms"]["status"], "disabled")
        version = self.client.get("/api/version").get_json()
        self.assertEqual(version["settings"]["ngn_fee_bps"], 200)
        self.assertNotIn("admin_token", version["settings"])


if __name__ == "__main__":
    unittest.main()
