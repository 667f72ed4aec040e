from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from jose import jwt

from authorization import AuthorizationEngine
from database import DocumentStore
from errors import StoreError
from identity import IdentityResolver, TokenVerifier
from membership import MembershipStore
from repository import ResourceRepository

SECRET = "test-secret"
AUDIENCE = "agility-test"


class RecordingStore(DocumentStore):
    """DocumentStore that records writes and can be told to fail some of them."""

    def __init__(self, database):
        super().__init__(database)
        self.writes = []
        self.fail_on = set()

    def _record(self, operation, collection):
        if (operation, collection) in self.fail_on:
            raise StoreError(f"{operation} on {collection} failed")
        self.writes.append((operation, collection))

    def insert_one(self, collection, document):
        self._record("insert_one", collection)
        return super().insert_one(collection, document)

    def insert_many(self, collection, documents):
        self._record("insert_many", collection)
        return super().insert_many(collection, documents)

    def update_one(self, collection, filter_dict, fields):
        self._record("update_one", collection)
        return super().update_one(collection, filter_dict, fields)

    def delete_one(self, collection, filter_dict):
        self._record("delete_one", collection)
        return super().delete_one(collection, filter_dict)

    def delete_many(self, collection, filter_dict):
        self._record("delete_many", collection)
        return super().delete_many(collection, filter_dict)


@pytest.fixture
def store():
    s = RecordingStore(mongomock.MongoClient(tz_aware=True)["AgilityDB"])
    s.ensure_indexes()
    return s


@pytest.fixture
def verifier():
    return TokenVerifier(secret=SECRET, audience=AUDIENCE)


@pytest.fixture
def resolver(store, verifier):
    return IdentityResolver(store, verifier)


@pytest.fixture
def memberships(store):
    return MembershipStore(store)


@pytest.fixture
def repository(store, memberships):
    return ResourceRepository(store, memberships)


@pytest.fixture
def engine(memberships, repository):
    return AuthorizationEngine(memberships, repository)


@pytest.fixture
def make_token():
    def _make(sub, name="", email="", picture="", audience=AUDIENCE, expires_in=timedelta(hours=1), secret=SECRET):
        claims = {
            "aud": audience,
            "name": name,
            "email": email,
            "picture": picture,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        if sub is not None:
            claims["sub"] = sub
        return jwt.encode(claims, secret, algorithm="HS256")
    return _make


@pytest.fixture
def sign_in(resolver, make_token):
    """Resolve a user through a fresh token and return the profile."""
    def _sign_in(sub, name=None, email=None):
        return resolver.resolve(make_token(sub, name=name or sub.title(), email=email or f"{sub}@example.com"))
    return _sign_in
