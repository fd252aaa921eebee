from __future__ import annotations

import json
import logging
import sqlite3
import uuid

import bcrypt

from marketplace.errors import ConflictError, NotFoundError, UnauthorizedError
from marketplace.lookups import require_public_profile, require_user
from marketplace.models import (
    AuthIdentity,
    LoginRequest,
    LoginResponse,
    ProfileUpdateRequest,
    PublicUserProfile,
    UserProfile,
    UserRegisterRequest,
)
from marketplace.repository import MarketplaceRepository
from marketplace.retry import retry_transient

LOGGER = logging.getLogger("marketplace.accounts")

# bcrypt only reads the first 72 bytes of a password.
BCRYPT_MAX_PASSWORD_BYTES = 72
DEFAULT_PASSWORD_ROUNDS = 12


def hash_password(password: str, *, rounds: int = DEFAULT_PASSWORD_ROUNDS) -> str:
    secret = password.encode()[:BCRYPT_MAX_PASSWORD_BYTES]
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode()[:BCRYPT_MAX_PASSWORD_BYTES], hashed.encode())
    except ValueError:
        return False


class AccountService:
    def __init__(
        self,
        repository: MarketplaceRepository,
        *,
        token_ttl_days: int = 7,
        password_rounds: int = DEFAULT_PASSWORD_ROUNDS,
    ) -> None:
        self.repository = repository
        self.token_ttl_days = token_ttl_days
        self.password_rounds = password_rounds

    @retry_transient()
    def register(self, payload: UserRegisterRequest) -> UserProfile:
        user_id = str(uuid.uuid4())
        try:
            self.repository.insert_user(
                payload,
                user_id=user_id,
                password_hash=hash_password(payload.password, rounds=self.password_rounds),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError("This email is already registered") from exc
        LOGGER.info(json.dumps({"event": "user_registered", "user_id": user_id, "role": payload.role}))
        return self.me(user_id)

    @retry_transient()
    def login(self, payload: LoginRequest) -> LoginResponse:
        credentials = self.repository.get_credentials(payload.email)
        if credentials is None or not verify_password(
            payload.password, credentials["password_hash"]
        ):
            raise UnauthorizedError("Invalid credentials")
        token, expires_at = self.repository.create_session_token(
            credentials["id"],
            ttl_days=self.token_ttl_days,
        )
        return LoginResponse(
            token=token,
            expires_at=expires_at,
            user=self.me(credentials["id"]),
        )

    @retry_transient()
    def authenticate(
        self,
        token: str | None,
        *,
        source_ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthIdentity:
        if not token:
            raise UnauthorizedError("No token, authorization denied")
        identity = self.repository.resolve_session_token(token)
        if identity is None:
            raise UnauthorizedError("Token is not valid")
        self.repository.touch_session_token(
            identity.token_id,
            source_ip=source_ip,
            user_agent=user_agent,
        )
        return identity

    @retry_transient()
    def logout(self, identity: AuthIdentity) -> bool:
        return self.repository.revoke_session_token(identity.token_id)

    @retry_transient()
    def me(self, user_id: str) -> UserProfile:
        profile = self.repository.get_user_profile(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    @retry_transient()
    def update_profile(self, user_id: str, patch: ProfileUpdateRequest) -> UserProfile:
        with self.repository.transaction():
            require_user(self.repository, user_id)
            self.repository.update_user(user_id, patch.changes())
        return self.me(user_id)

    @retry_transient()
    def public_profile(self, user_id: str) -> PublicUserProfile:
        return require_public_profile(self.repository, require_user(self.repository, user_id))
