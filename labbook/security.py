import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt, JWTError

from labbook.errors import MissingToken, MalformedToken
from labbook.models import UserRole

# bcrypt only looks at the first 72 bytes, newer releases refuse longer input
BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt()).decode("ascii")


def verify_password(plain: str, hashed: str) -> bool:
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("ascii"))
    except ValueError:
        # not a bcrypt hash
        return False


def generate_otp(length: int = 6) -> str:
    return str(secrets.randbelow(10 ** length)).zfill(length)


@dataclass(frozen=True)
class Principal:
    """Identity carried by a verified session token."""

    user_id: int
    role: UserRole

    @classmethod
    def from_claims(cls, claims: dict) -> "Principal":
        try:
            return cls(user_id=int(claims["sub"]), role=UserRole(claims["role"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedToken() from exc

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class TokenService:
    """Signs and verifies bearer tokens with a single process-wide secret.

    Tokens are stateless: nothing is stored server side, a token stays valid
    until its ``exp`` claim passes.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", ttl: timedelta = timedelta(hours=1)):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    def issue(self, claims: dict, expires_in: timedelta = None) -> str:
        now = datetime.now(timezone.utc)
        payload = dict(sorted(claims.items()))
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + (expires_in if expires_in is not None else self.ttl)).timestamp())
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> dict:
        if not token:
            raise MissingToken()
        try:
            return jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except JWTError as exc:
            # covers bad signatures, garbage input and expired tokens
            raise MalformedToken() from exc

    def issue_session(self, user) -> str:
        return self.issue({"sub": str(user.id), "role": user.role.value})
