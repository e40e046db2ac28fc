from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from pambo import create_app
from pambo.utils.env import TelemetrySettings
from pambo.utils.telemetry import Telemetry


class MetricsEndpointTestCase(unittest.TestCase):
    def setUp(self):
        self.telemetry = Telemetry.create(TelemetrySettings())
        self.app = create_app(
            {"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:"},
            telemetry=self.telemetry,
        )
        self.client = self.app.test_client()

    def tearDown(self):
        self.telemetry.shutdown()

    def test_open_when_no_token_configured(self):
        self.telemetry.metrics.increment("search.requests", {"hub": "marketplace"})
        self.telemetry.metrics.record_latency("event.handler.latency.ms", 3.5, {"type": "SEARCH"})
        with patch.dict(os.environ, {"METRICS_TOKEN": ""}, clear=False):
            res = self.client.get("/api/metrics")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["success"])
        counters = {item["key"]: item["value"] for item in body["metrics"]["counters"]}
        self.assertEqual(counters["search.requests{hub=marketplace}"], 1)
        latency = body["metrics"]["latencies"][0]
        self.assertEqual(latency["key"], "event.handler.latency.ms{type=SEARCH}")
        self.assertEqual(latency["count"], 1)
        self.assertEqual(body["metrics"]["boot_timestamp"], self.telemetry.metrics.boot_timestamp)
        self.assertEqual(body["event_queue"]["depth"], 0)
        self.assertIn("SEARCH", body["event_queue"]["registered_event_types"])

    def test_token_required_when_configured(self):
        with patch.dict(os.environ, {"METRICS_TOKEN": "s3cret-token"}, clear=False):
            missing = self.client.get("/api/metrics")
            wrong = self.client.get("/api/metrics", headers={"X-Metrics-Token": "nope"})
            header = self.client.get("/api/metrics", headers={"X-Metrics-Token": "s3cret-token"})
            query = self.client.get("/api/metrics?token=s3cret-token")

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.get_json(), {"success": False, "error": "Unauthorized metrics access"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(header.status_code, 200)
        self.assertEqual(query.status_code, 200)

    def test_requests_are_measured_by_route_template(self):
        self.client.get("/api/matchmaking/health")
        self.client.get("/api/matchmaking/health")
        with patch.dict(os.environ, {"METRICS_TOKEN": ""}, clear=False):
            res = self.client.get("/api/metrics")
        body = res.get_json()
        counters = {item["key"]: item["value"] for item in body["metrics"]["counters"]}
        self.assertEqual(counters["http.request.count{method=GET,path=/api/matchmaking/health,status=200}"], 2)
        latency_keys = {item["key"] for item in body["metrics"]["latencies"]}
        self.assertIn("http.request.latency.ms{method=GET,path=/api/matchmaking/health}", latency_keys)


if __name__ == "__main__":
    unittest.main()
