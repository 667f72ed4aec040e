"""
Identity resolution

Turns a signed identity token into the local user profile, creating the
profile on first sight and refreshing it when the token's claims change.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from jose import JWTError, jwt

from config import Settings
from database import USERS, DocumentStore
from errors import AuthError
from schemas import User, from_document

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "email", "profile_image_url")


@dataclass(frozen=True)
class TokenClaims:
    subject_id: str
    name: str
    email: str
    picture_url: str

    def profile(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "profile_image_url": self.picture_url,
        }


@dataclass(frozen=True)
class TokenVerifier:
    """Verifies identity tokens for one fixed audience."""

    secret: str
    audience: str
    algorithms: Sequence[str] = ("HS256",)
    issuer: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVerifier":
        settings.validate_token_settings()
        return cls(
            secret=settings.jwt_secret,
            audience=settings.jwt_audience,
            algorithms=(settings.jwt_algorithm,),
            issuer=settings.jwt_issuer,
        )

    def verify(self, token: str) -> TokenClaims:
        if not token:
            raise AuthError("Missing token")
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=list(self.algorithms),
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as e:
            raise AuthError(f"Invalid token: {e}") from e

        subject = payload.get("sub")
        if not subject:
            raise AuthError("Invalid token: no subject")
        return TokenClaims(
            subject_id=str(subject),
            name=payload.get("name") or "",
            email=payload.get("email") or "",
            picture_url=payload.get("picture") or "",
        )


class IdentityResolver:
    def __init__(self, store: DocumentStore, verifier: TokenVerifier):
        self.store = store
        self.verifier = verifier

    def resolve(self, token: str) -> User:
        """Verify the token and return the persisted, current profile.

        Writes only on first sight of a subject or when a profile field
        differs from the token's claims, so repeated calls with the same
        token are free of writes.
        """
        claims = self.verifier.verify(token)
        profile = claims.profile()

        doc = self.store.find_one(USERS, {"_id": claims.subject_id})
        if doc is None:
            self.store.insert_one(USERS, {"_id": claims.subject_id, **profile})
            logger.info(f"Created user {claims.subject_id}")
            return User(id=claims.subject_id, **profile)

        changed = {k: v for k, v in profile.items() if doc.get(k) != v}
        if changed:
            self.store.update_one(USERS, {"_id": claims.subject_id}, profile)
            doc.update(profile)
            logger.info(f"Refreshed profile of user {claims.subject_id}: {sorted(changed)}")
        return from_document(User, doc)
