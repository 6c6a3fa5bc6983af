from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from planner_config import ConfigError, load_config_from_env, load_dotenv_file


class TestLoadConfigFromEnv(unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = load_config_from_env({})
        self.assertIsNone(cfg.openai_api_key)
        self.assertFalse(cfg.ai_enabled)
        self.assertEqual(cfg.plan_model, "gpt-5")
        self.assertEqual(cfg.image_model, "gpt-image-1")
        self.assertEqual(cfg.capture_scale, 2)
        self.assertEqual(cfg.capture_background, "#f3f4f6")
        self.assertAlmostEqual(cfg.hero_image_timeout_s, 15.0)

    def test_overrides(self) -> None:
        cfg = load_config_from_env(
            {
                "OPENAI_API_KEY": " sk-test ",
                "OPENAI_CHAT_MODEL": "gpt-5-nano",
                "PLANNER_TIMEOUT_S": "30",
                "PLANNER_CAPTURE_SCALE": "3",
                "PLANNER_LOG_LEVEL": "debug",
            }
        )
        self.assertEqual(cfg.openai_api_key, "sk-test")
        self.assertTrue(cfg.ai_enabled)
        self.assertEqual(cfg.chat_model, "gpt-5-nano")
        self.assertAlmostEqual(cfg.request_timeout_s, 30.0)
        self.assertEqual(cfg.capture_scale, 3)
        self.assertEqual(cfg.log_level, "DEBUG")

    def test_blank_values_fall_back_to_defaults(self) -> None:
        cfg = load_config_from_env({"OPENAI_API_KEY": "  ", "OPENAI_PLAN_MODEL": ""})
        self.assertIsNone(cfg.openai_api_key)
        self.assertEqual(cfg.plan_model, "gpt-5")

    def test_invalid_numbers_raise(self) -> None:
        with self.assertRaises(ConfigError):
            load_config_from_env({"PLANNER_TIMEOUT_S": "soon"})
        with self.assertRaises(ConfigError):
            load_config_from_env({"PLANNER_HERO_IMAGE_TIMEOUT_S": "0"})
        with self.assertRaises(ConfigError):
            load_config_from_env({"PLANNER_CAPTURE_SCALE": "1.5"})
        with self.assertRaises(ConfigError):
            load_config_from_env({"PLANNER_CAPTURE_SCALE": "8"})


class TestLoadDotenvFile(unittest.TestCase):
    def test_reads_explicit_path_without_overriding(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text("PLANNER_TEST_ONLY=from-file\nPLANNER_TEST_KEEP=from-file\n", encoding="utf-8")
            with mock.patch.dict(os.environ, {"PLANNER_TEST_KEEP": "from-env"}, clear=False):
                os.environ.pop("PLANNER_TEST_ONLY", None)
                load_dotenv_file(path)
                self.assertEqual(os.environ["PLANNER_TEST_ONLY"], "from-file")
                self.assertEqual(os.environ["PLANNER_TEST_KEEP"], "from-env")


if __name__ == "__main__":
    unittest.main()
