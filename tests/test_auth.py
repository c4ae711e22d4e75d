import pytest
from jose import JWTError, jwt

from crm_billing_svc.auth import decode_access_token
from factories import JWT_SECRET, make_token


def test_decode_access_token(settings):
    claims = decode_access_token(make_token('user_42'), settings)
    assert claims["sub"] == 'user_42'


def test_decode_access_token_wrong_secret(settings):
    with pytest.raises(JWTError):
        decode_access_token(make_token(secret='other_secret'), settings)


def test_decode_access_token_checks_audience(settings):
    audience_settings = settings.model_copy(update={"jwt_audience": "authenticated"})
    good = jwt.encode({"sub": "user_1", "aud": "authenticated"}, JWT_SECRET, algorithm='HS256')
    bad = jwt.encode({"sub": "user_1", "aud": "anon"}, JWT_SECRET, algorithm='HS256')

    assert decode_access_token(good, audience_settings)["sub"] == 'user_1'
    with pytest.raises(JWTError):
        decode_access_token(bad, audience_settings)


def test_token_without_subject_is_rejected(client):
    token = jwt.encode({"email": "someone@example.com"}, JWT_SECRET, algorithm='HS256')
    response = client.get("/billing/subscriptions", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
