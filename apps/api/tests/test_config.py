import pytest

from config import settings, validate_security_settings

STRONG_SECRET = "a-long-random-session-signing-secret"


def test_default_session_secret_is_refused(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "change_me_in_production")

    with pytest.raises(ValueError, match="JWT_SECRET"):
        validate_security_settings()


@pytest.mark.parametrize(
    "field,value",
    [
        ("STRIPE_SECRET_KEY", "pk_live_publishable"),
        ("STRIPE_WEBHOOK_SECRET", "not-a-signing-secret"),
        ("CREDIT_COST_ENHANCED_GENERATION", 0),
    ],
)
def test_misconfigured_billing_and_costs_are_refused(monkeypatch, field, value):
    monkeypatch.setattr(settings, "JWT_SECRET", STRONG_SECRET)
    monkeypatch.setattr(settings, field, value)

    with pytest.raises(ValueError):
        validate_security_settings()


def test_valid_configuration_passes(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", STRONG_SECRET)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_abc")

    validate_security_settings()
