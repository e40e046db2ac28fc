from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from pambo.utils.env import TelemetrySettings, env_bool, env_int, is_production


class EnvHelpersTestCase(unittest.TestCase):
    def test_env_int_clamps_and_defaults(self):
        with patch.dict(os.environ, {"X_INT": "abc"}, clear=False):
            self.assertEqual(env_int("X_INT", 7), 7)
        with patch.dict(os.environ, {"X_INT": "-4"}, clear=False):
            self.assertEqual(env_int("X_INT", 7, minimum=0), 0)
        with patch.dict(os.environ, {"X_INT": "900"}, clear=False):
            self.assertEqual(env_int("X_INT", 7, maximum=100), 100)

    def test_env_bool(self):
        with patch.dict(os.environ, {"X_BOOL": "yes"}, clear=False):
            self.assertTrue(env_bool("X_BOOL", False))
        with patch.dict(os.environ, {"X_BOOL": "0"}, clear=False):
            self.assertFalse(env_bool("X_BOOL", True))
        with patch.dict(os.environ, {"X_BOOL": ""}, clear=False):
            self.assertTrue(env_bool("X_BOOL", True))

    def test_is_production(self):
        self.assertTrue(is_production("prod"))
        self.assertTrue(is_production("production"))
        self.assertFalse(is_production("dev"))


class TelemetrySettingsTestCase(unittest.TestCase):
    def test_defaults(self):
        settings = TelemetrySettings()
        self.assertEqual(settings.queue_max_size, 20000)
        self.assertEqual(settings.worker_interval_ms, 1000)
        self.assertEqual(settings.worker_batch_size, 200)
        self.assertIsNone(settings.handler_timeout_seconds)
        self.assertFalse(settings.worker_autostart)

    def test_from_env(self):
        env = {
            "EVENT_QUEUE_MAX_SIZE": "50",
            "EVENT_WORKER_INTERVAL_MS": "250",
            "EVENT_WORKER_BATCH_SIZE": "10",
            "EVENT_HANDLER_TIMEOUT_MS": "1500",
            "METRICS_MAX_LATENCY_SAMPLES": "0",
            "EVENT_WORKER_AUTOSTART": "true",
        }
        with patch.dict(os.environ, env, clear=False):
            settings = TelemetrySettings.from_env()
        self.assertEqual(settings.queue_max_size, 50)
        self.assertEqual(settings.worker_interval_ms, 250)
        self.assertEqual(settings.worker_batch_size, 10)
        self.assertEqual(settings.handler_timeout_seconds, 1.5)
        self.assertEqual(settings.max_latency_samples, 1)
        self.assertTrue(settings.worker_autostart)


if __name__ == "__main__":
    unittest.main()
