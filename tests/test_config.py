import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from setup_nimskull.config import DEFAULT_REPO, Config, config_path, default_cache_root, load_config, redact_token


class TestLoadConfig(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_config(Path(td) / "nope.json"), Config())

    def test_reads_known_keys_and_ignores_others(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"repo": "me/fork", "page_size": 25, "colour": "blue"}), encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.repo, "me/fork")
        self.assertEqual(cfg.page_size, 25)
        self.assertIsNone(cfg.token)

    def test_broken_or_non_object_json_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            for content in ("{not json", "[1, 2]"):
                with self.subTest(content=content):
                    path.write_text(content, encoding="utf-8")
                    self.assertEqual(load_config(path).repo, DEFAULT_REPO)

    def test_non_utf8_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_bytes(b"\xff\xfe{}")
            with self.assertLogs("setup_nimskull.config", level="WARNING"):
                self.assertEqual(load_config(path), Config())

    def test_wrong_typed_fields_fall_back_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            doc = {"page_size": "ten", "timeout_s": True, "repo": 42, "token": "ghp_x", "cache_dir": None}
            path.write_text(json.dumps(doc), encoding="utf-8")
            with self.assertLogs("setup_nimskull.config", level="WARNING"):
                cfg = load_config(path)
        self.assertEqual(cfg, Config(token="ghp_x"))

    def test_numeric_strings_are_coerced(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"page_size": "25", "timeout_s": "7.5"}), encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual((cfg.page_size, cfg.timeout_s), (25, 7.5))

    def test_non_positive_numbers_are_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"page_size": 0, "timeout_s": -1}), encoding="utf-8")
            with self.assertLogs("setup_nimskull.config", level="WARNING"):
                cfg = load_config(path)
        self.assertEqual(cfg, Config())

    def test_env_selects_config_path(self) -> None:
        with patch.dict(os.environ, {"NIMSKULL_SETUP_CONFIG_PATH": "/tmp/custom.json"}):
            self.assertEqual(config_path(), Path("/tmp/custom.json"))


class TestCacheRoot(unittest.TestCase):
    def test_precedence(self) -> None:
        env = {"NIMSKULL_CACHE_DIR": "/env/nimskull", "RUNNER_TOOL_CACHE": "/opt/hostedtoolcache"}
        with patch.dict(os.environ, env, clear=True):
            self.assertEqual(default_cache_root(Config(cache_dir="/cfg")), Path("/cfg"))
            self.assertEqual(default_cache_root(Config()), Path("/env/nimskull"))
        with patch.dict(os.environ, {"RUNNER_TOOL_CACHE": "/opt/hostedtoolcache"}, clear=True):
            self.assertEqual(default_cache_root(), Path("/opt/hostedtoolcache"))

    def test_falls_back_to_user_cache(self) -> None:
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("setup_nimskull.config.user_cache_path", return_value=Path("/home/u/.cache/setup-nimskull")),
        ):
            self.assertEqual(default_cache_root(), Path("/home/u/.cache/setup-nimskull/tool-cache"))


class TestRedactToken(unittest.TestCase):
    def test_redaction(self) -> None:
        self.assertIsNone(redact_token(None))
        self.assertEqual(redact_token("short"), "sh...rt")
        self.assertEqual(redact_token("ghp_abcdefghijklmnop"), "ghp_ab...mnop")


if __name__ == "__main__":
    unittest.main()
