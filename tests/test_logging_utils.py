import logging
import unittest

from setup_nimskull.logging_utils import configure_logging


class TestConfigureLogging(unittest.TestCase):
    def tearDown(self) -> None:
        configure_logging("WARNING")

    def test_sets_root_level_and_quiets_httpx(self) -> None:
        configure_logging("info")
        self.assertEqual(logging.getLogger().level, logging.INFO)
        self.assertEqual(logging.getLogger("httpx").level, logging.WARNING)

    def test_debug_lets_httpx_through(self) -> None:
        configure_logging("INFO")
        configure_logging("DEBUG")
        self.assertEqual(logging.getLogger("httpx").getEffectiveLevel(), logging.DEBUG)

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging("chatty")
        self.assertEqual(logging.getLogger().level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
