"""Unit tests for Settings."""

import pytest
from pydantic import ValidationError

from backend.app.core.config_core import Settings


class TestSettings:
    def test_ranges_use_sheet_names(self, settings):
        assert settings.partners_range() == "Партнеры!A:M"
        assert settings.partners_range("H:H") == "Партнеры!H:H"
        assert settings.commissions_range() == "Начисления!A:G"

    def test_defaults(self, settings):
        assert settings.RETRY_MAX_ATTEMPTS == 3
        assert settings.RETRY_BASE_DELAY_SEC == 1.0
        assert settings.WRITE_TIMEOUT_SEC == 30.0
        assert settings.REGISTRATION_SETTLE_DELAY_SEC == 5.0
        assert settings.REFERRAL_CODE_PREFIX == "PARTNER"
        assert settings.REFERRAL_CODE_LENGTH == 6

    def test_blank_credentials_are_unconfigured(self):
        s = Settings(GOOGLE_SHEETS_ID="  ", GOOGLE_SHEETS_API_KEY="", GOOGLE_APPS_SCRIPT_URL="")
        assert s.GOOGLE_SHEETS_ID is None
        assert not s.read_configured
        assert not s.write_configured

    @pytest.mark.parametrize(
        "env, normalized",
        [("production", "prod"), ("test", "dev"), ("dev", "dev"), ("local", "local"), ("weird", "prod")],
    )
    def test_env_normalization(self, env, normalized):
        assert Settings(ENV=env).env_normalized == normalized

    def test_cors_csv(self):
        s = Settings(CORS_ORIGINS="https://a.example, https://b.example")
        assert s.effective_cors_origins() == ["https://a.example", "https://b.example"]

    def test_bot_token_read_from_env_alias(self, monkeypatch):
        monkeypatch.setenv("BOT_TOKEN", "42:from-env")
        assert Settings().TELEGRAM_BOT_TOKEN == "42:from-env"

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            Settings(RETRY_MAX_ATTEMPTS=0)

    def test_debug_dump_masks_secrets(self, settings):
        dump = settings.debug_dump()
        assert "key-abc" not in dump.values()
        assert dump["readKey"].endswith("...")
