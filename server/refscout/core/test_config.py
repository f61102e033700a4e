import os
import unittest
from unittest import mock

from server.refscout.core.config import PROVIDER_NAMES, Settings


class TestSettingsFromEnv(unittest.TestCase):
    def test_defaults_enable_every_provider(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.enabled_providers, PROVIDER_NAMES)
        self.assertEqual(settings.cache_backend, "memory")
        self.assertEqual(settings.crossref_timeout_seconds, 30.0)
        self.assertEqual(settings.pubmed_timeout_seconds, 10.0)
        self.assertEqual(settings.semantic_scholar_timeout_seconds, 15.0)

    def test_provider_list_is_parsed_and_deduplicated(self) -> None:
        with mock.patch.dict(os.environ, {"REFSCOUT_PROVIDERS": "OpenAlex, crossref,openalex"}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.enabled_providers, ("openalex", "crossref"))

    def test_unknown_provider_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {"REFSCOUT_PROVIDERS": "crossref,scopus"}, clear=True):
            with self.assertRaises(ValueError):
                Settings.from_env()

    def test_invalid_values_raise(self) -> None:
        for env in (
            {"REFSCOUT_CACHE_BACKEND": "redis"},
            {"REFSCOUT_CACHE_ENABLED": "maybe"},
            {"REFSCOUT_RESOLVE_MAX_WORKERS": "0"},
            {"REFSCOUT_DISCOVER_DEFAULT_LIMIT": "150", "REFSCOUT_DISCOVER_MAX_LIMIT": "100"},
        ):
            with self.subTest(env=env), mock.patch.dict(os.environ, env, clear=True):
                with self.assertRaises(ValueError):
                    Settings.from_env()

    def test_user_agent_carries_contact_email(self) -> None:
        with mock.patch.dict(os.environ, {"REFSCOUT_CONTACT_EMAIL": "lib@example.org"}, clear=True):
            settings = Settings.from_env()
        self.assertIn("mailto:lib@example.org", settings.user_agent)


if __name__ == "__main__":
    unittest.main()
