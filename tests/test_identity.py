from datetime import timedelta

import pytest

from config import Settings
from errors import AuthError
from identity import TokenVerifier


def test_first_resolve_creates_user(resolver, store, make_token):
    token = make_token("google-123", name="Ada", email="ada@example.com", picture="https://img/ada.png")

    user = resolver.resolve(token)

    assert user.id == "google-123"
    assert user.name == "Ada"
    assert user.email == "ada@example.com"
    assert user.profile_image_url == "https://img/ada.png"
    assert store.find_one("users", {"_id": "google-123"})["email"] == "ada@example.com"


def test_unchanged_profile_writes_once(resolver, store, make_token):
    token = make_token("google-123", name="Ada", email="ada@example.com")

    first = resolver.resolve(token)
    second = resolver.resolve(token)

    assert first == second
    assert len(store.find("users")) == 1
    assert store.writes == [("insert_one", "users")]


def test_changed_name_updates_once(resolver, store, make_token):
    resolver.resolve(make_token("google-123", name="Ada", email="ada@example.com"))

    user = resolver.resolve(make_token("google-123", name="Ada Lovelace", email="ada@example.com"))
    resolver.resolve(make_token("google-123", name="Ada Lovelace", email="ada@example.com"))

    assert user.name == "Ada Lovelace"
    assert store.writes.count(("update_one", "users")) == 1
    assert store.find_one("users", {"_id": "google-123"})["name"] == "Ada Lovelace"


def test_garbage_token_rejected(resolver):
    with pytest.raises(AuthError):
        resolver.resolve("not-a-jwt")


def test_empty_token_rejected(resolver):
    with pytest.raises(AuthError):
        resolver.resolve("")


def test_expired_token_rejected(resolver, make_token):
    with pytest.raises(AuthError):
        resolver.resolve(make_token("google-123", expires_in=timedelta(minutes=-5)))


def test_wrong_audience_rejected(resolver, make_token):
    with pytest.raises(AuthError):
        resolver.resolve(make_token("google-123", audience="someone-else"))


def test_wrong_signature_rejected(resolver, make_token):
    with pytest.raises(AuthError):
        resolver.resolve(make_token("google-123", secret="other-secret"))


def test_token_without_subject_rejected(resolver, store, make_token):
    with pytest.raises(AuthError):
        resolver.resolve(make_token(None, name="Nobody"))
    assert store.writes == []


def test_verifier_from_settings_requires_secret():
    with pytest.raises(ValueError):
        TokenVerifier.from_settings(Settings(jwt_secret="", jwt_audience="agility"))


def test_verifier_from_settings_ignores_placeholder_secret():
    with pytest.raises(ValueError):
        TokenVerifier.from_settings(Settings(jwt_secret="your-secret-here", jwt_audience="agility"))


def test_verifier_from_settings():
    verifier = TokenVerifier.from_settings(Settings(jwt_secret="s3cret", jwt_audience="agility"))
    assert verifier.audience == "agility"
    assert verifier.algorithms == ("HS256",)
