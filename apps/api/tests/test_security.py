import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from portal.core.config import settings
from portal.core.security import create_access_token, decode_access_token


def test_access_token_round_trip():
    user_id = uuid.uuid4()
    claims = decode_access_token(create_access_token(user_id, email="a@test.com"))
    assert claims["sub"] == str(user_id)
    assert claims["email"] == "a@test.com"


def test_previous_secret_still_accepted_during_rotation(monkeypatch):
    token = create_access_token(uuid.uuid4())
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", settings.JWT_SECRET)
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")

    assert decode_access_token(token)["sub"]


def test_unknown_secret_rejected(monkeypatch):
    token = create_access_token(uuid.uuid4())
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret")

    with pytest.raises(jwt.InvalidSignatureError):
        decode_access_token(token)


def test_expired_token_rejected():
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1)},
        settings.JWT_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(token)


def test_audience_checked_when_configured(monkeypatch):
    token = create_access_token(uuid.uuid4())
    monkeypatch.setattr(settings, "JWT_AUDIENCE", "authenticated")

    with pytest.raises(jwt.MissingRequiredClaimError):
        decode_access_token(token)
