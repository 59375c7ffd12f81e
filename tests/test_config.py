import os
import unittest

from weatherwhisper.config import Settings


class TestConfig(unittest.TestCase):
    def test_settings_defaults(self):
        previous = os.environ.pop("WHISPER_CARDS_BASE_URL", None)
        try:
            s = Settings()
            self.assertEqual(s.cards_base_url, "http://localhost:8787")
            self.assertEqual(s.default_cards_count, 5)
            self.assertEqual(s.retry_max_attempts, 3)
        finally:
            if previous is not None:
                os.environ["WHISPER_CARDS_BASE_URL"] = previous

    def test_settings_env_override_strips_trailing_slash(self):
        previous = os.environ.get("WHISPER_CARDS_BASE_URL")
        try:
            os.environ["WHISPER_CARDS_BASE_URL"] = "https://cards.example.com/"
            s = Settings()
            self.assertEqual(s.cards_base_url, "https://cards.example.com")
        finally:
            if previous is None:
                os.environ.pop("WHISPER_CARDS_BASE_URL", None)
            else:
                os.environ["WHISPER_CARDS_BASE_URL"] = previous

    def test_retry_attempts_never_below_one(self):
        previous = os.environ.get("WHISPER_RETRY_MAX_ATTEMPTS")
        try:
            os.environ["WHISPER_RETRY_MAX_ATTEMPTS"] = "0"
            s = Settings()
            self.assertEqual(s.retry_max_attempts, 1)
        finally:
            if previous is None:
                os.environ.pop("WHISPER_RETRY_MAX_ATTEMPTS", None)
            else:
                os.environ["WHISPER_RETRY_MAX_ATTEMPTS"] = previous


if __name__ == "__main__":
    unittest.main()
