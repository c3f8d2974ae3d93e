"""Tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from nexusrbx.config import Settings, get_settings


class TestSettings:
    """Tests for Settings class."""

    def test_defaults(self) -> None:
        """Test defaults for optional settings."""
        settings = Settings(_env_file=None)
        assert settings.environment.value == "development"
        assert settings.api_port == 3000
        assert settings.stripe_webhook_tolerance == 300
        assert settings.users_collection == "users"
        assert settings.is_production is False

    def test_missing_stripe_secrets_fail(self) -> None:
        """Test that startup without Stripe secrets fails."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        missing = {err["loc"][0] for err in exc_info.value.errors()}
        assert missing == {"stripe_secret_key", "stripe_webhook_secret"}

    def test_missing_webhook_secret_fails(self) -> None:
        """Test that the webhook secret is required on its own."""
        with patch.dict(os.environ, {"STRIPE_SECRET_KEY": "sk_test_1"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_secrets_are_masked(self) -> None:
        """Test that secrets do not leak through repr."""
        settings = Settings(_env_file=None)
        assert "whsec_test_nexusrbx" not in repr(settings)
        assert settings.stripe_webhook_secret.get_secret_value() == "whsec_test_nexusrbx"

    def test_price_ids_from_environment(self) -> None:
        """Test that price ids are read from the environment."""
        with patch.dict(os.environ, {"STRIPE_PRICE_PRO_MONTHLY": "price_fromEnv"}):
            settings = Settings(_env_file=None)
            assert settings.stripe_price_pro_monthly == "price_fromEnv"

    def test_production_flag(self) -> None:
        """Test production detection."""
        with patch.dict(os.environ, {"ENVIRONMENT": "production"}):
            settings = Settings(_env_file=None)
            assert settings.is_production is True

    def test_settings_cached(self) -> None:
        """Test that get_settings returns one instance."""
        assert get_settings() is get_settings()


class TestAppStartup:
    """Tests for application construction."""

    def test_create_app_requires_stripe_secrets(self) -> None:
        """Test that the app refuses to start unconfigured."""
        from nexusrbx.main import create_app

        get_settings.cache_clear()
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                create_app()

    def test_create_app_wires_services(self) -> None:
        """Test that billing and catalog are ready before startup."""
        from nexusrbx.main import create_app

        app = create_app()
        assert app.state.billing is not None
        assert len(app.state.catalog) == 7
        assert app.state.entitlements is None
