import pytest
from pydantic import ValidationError

from crm_billing_svc.config import Settings


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv('STRIPE_SECRET_KEY', 'sk_test_env')
    monkeypatch.setenv('FRONTEND_URL', 'https://app.example.com')
    settings = Settings(_env_file=None)
    assert settings.stripe_secret_key == 'sk_test_env'
    assert settings.frontend_url == 'https://app.example.com'
    assert settings.stripe_webhook_tolerance == 300


def test_missing_stripe_secret_key_fails(monkeypatch):
    monkeypatch.delenv('STRIPE_SECRET_KEY', raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_missing_webhook_secret_is_allowed(monkeypatch):
    monkeypatch.setenv('STRIPE_SECRET_KEY', 'sk_test_env')
    monkeypatch.delenv('STRIPE_WEBHOOK_SECRET', raising=False)
    assert Settings(_env_file=None).stripe_webhook_secret == ""
