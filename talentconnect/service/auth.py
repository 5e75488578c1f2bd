from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from redis.exceptions import RedisError

from talentconnect.logging import get_logger
from talentconnect.service.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ServerError,
)
from talentconnect.service.passwords import (
    burn_verification,
    hash_password,
    validate_password_strength,
    verify_password,
)
from talentconnect.service.tokens import ACCESS, REFRESH, TokenError, TokenIssuer
from talentconnect.storage.errors import ConstraintViolation
from talentconnect.storage.models import (
    PROFILE_BUILDERS,
    Account,
    AccountType,
    ConsentRecord,
    Profile,
    new_id,
)

logger = get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class AuthStore(Protocol):
    def get_account(self, account_id: str) -> Optional[Account]: ...

    def get_account_by_email(self, email: str) -> Optional[Account]: ...

    def provision_account(
        self,
        account: Account,
        profile: Profile,
        consents: Sequence[ConsentRecord],
    ) -> Account: ...

    def record_login(self, account_id: str, when: datetime) -> Optional[Account]: ...

    def get_profile(self, account_id: str) -> Optional[Profile]: ...


@dataclass(frozen=True)
class Principal:
    """Identity admitted by the auth gateway for the current request."""

    account_id: str
    email: str
    account_type: AccountType
    token: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class AuthService:
    """Registration, login, token lifecycle and request authentication."""

    def __init__(self, store: AuthStore, cache, tokens: TokenIssuer) -> None:
        self.store: AuthStore = store
        self.cache = cache
        self.tokens = tokens
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _issue_tokens(self, account: Account) -> TokenPair:
        claims: Dict[str, Any] = {
            "sub": account.id,
            "email": account.email,
            "userType": account.account_type.value,
        }
        return TokenPair(
            access_token=self.tokens.issue_access_token({**claims, "jti": new_id()}),
            refresh_token=self.tokens.issue_refresh_token({**claims, "jti": new_id()}),
        )

    async def register(
        self,
        *,
        email: str,
        password: str,
        account_type: AccountType,
        profile_fields: Optional[Mapping[str, Any]] = None,
        consents: Mapping[str, Optional[bool]],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Account, Profile, TokenPair]:
        """Create an account, its profile and its consent records as one unit.

        Raises:
            ValidationError: ``WEAK_PASSWORD`` when the password policy fails.
            ConflictError: ``USER_EXISTS`` when the email is taken, whether the
                pre-check or the store's unique constraint catches it.
            ServerError: ``ACCOUNT_CREATION_FAILED`` for any other failure
                inside the transaction; nothing is persisted in that case.
        """
        email = email.strip().lower()
        validate_password_strength(password)

        existing = await asyncio.to_thread(self.store.get_account_by_email, email)
        if existing:
            raise ConflictError(
                "User with this email already exists", error_code="USER_EXISTS"
            )

        password_hash = await asyncio.to_thread(hash_password, password)
        account = Account(
            id=new_id(),
            email=email,
            password_hash=password_hash,
            account_type=account_type,
        )
        profile = PROFILE_BUILDERS[account_type](account.id, dict(profile_fields or {}))
        consent_records: List[ConsentRecord] = [
            ConsentRecord.new(
                account.id,
                consent_type,
                bool(granted),
                ip_address=ip_address,
                user_agent=user_agent,
            )
            for consent_type, granted in consents.items()
            if granted is not None
        ]

        try:
            await asyncio.to_thread(
                self.store.provision_account, account, profile, consent_records
            )
        except ConstraintViolation as exc:
            self.logger.info("registration_conflict", detail=exc.detail)
            raise ConflictError(
                "User with this email already exists", error_code="USER_EXISTS"
            ) from exc
        except Exception as exc:
            self.logger.error(
                "account_creation_failed",
                account_type=account_type.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ServerError(
                "Failed to create account", error_code="ACCOUNT_CREATION_FAILED"
            ) from exc

        tokens = self._issue_tokens(account)
        self.logger.info(
            "account_registered",
            account_id=account.id,
            account_type=account_type.value,
            consent_count=len(consent_records),
        )
        return account, profile, tokens

    async def login(self, email: str, password: str) -> Tuple[Account, TokenPair]:
        email = email.strip().lower()
        account = await asyncio.to_thread(self.store.get_account_by_email, email)
        if account is None:
            await asyncio.to_thread(burn_verification, password)
            self.logger.info("login_failed", reason="unknown_email")
            raise AuthenticationError(
                INVALID_CREDENTIALS_MESSAGE, error_code="INVALID_CREDENTIALS"
            )
        if not account.is_active:
            self.logger.info("login_failed", reason="inactive", account_id=account.id)
            raise AuthenticationError(
                INVALID_CREDENTIALS_MESSAGE, error_code="INVALID_CREDENTIALS"
            )
        valid = await asyncio.to_thread(verify_password, account.password_hash, password)
        if not valid:
            self.logger.info("login_failed", reason="bad_password", account_id=account.id)
            raise AuthenticationError(
                INVALID_CREDENTIALS_MESSAGE, error_code="INVALID_CREDENTIALS"
            )

        updated = await asyncio.to_thread(self.store.record_login, account.id, self._now())
        account = updated or account
        tokens = self._issue_tokens(account)
        self.logger.info("login_succeeded", account_id=account.id)
        return account, tokens

    async def _revoke(self, token: str, claims: Mapping[str, Any]) -> bool:
        """Block ``token`` while it would still verify.

        Returns False when an entry already existed, i.e. another caller
        revoked the same token first.
        """
        ttl = max(self.tokens.remaining_seconds(claims) + self.tokens.leeway_seconds, 1)
        created = await self.cache.revoke_token(token, ttl)
        if created:
            self.logger.info(
                "token_revoked",
                account_id=claims.get("sub"),
                token_type=claims.get("typ"),
                ttl_seconds=ttl,
            )
        return created

    async def _is_revoked(self, token: str) -> bool:
        try:
            return await self.cache.is_token_revoked(token)
        except (RedisError, OSError) as exc:
            # Fail-open so a cache outage does not lock every user out
            self.logger.warning(
                "revocation_check_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

    async def logout(self, authorization: Optional[str]) -> None:
        """Revoke the presented token for the rest of its validity.

        No token, an unverifiable token and an already revoked token are all
        accepted silently; a token that does not verify cannot be replayed
        anyway, so nothing is written for it.
        """
        token = extract_bearer(authorization)
        if not token:
            return
        try:
            claims = self.tokens.verify(token)
        except TokenError:
            self.logger.info("logout_unverifiable_token")
            return
        try:
            await self._revoke(token, claims)
        except (RedisError, OSError) as exc:
            self.logger.warning(
                "token_revocation_failed",
                account_id=claims.get("sub"),
                error_type=type(exc).__name__,
                error=str(exc),
            )

    async def authenticate(self, authorization: Optional[str]) -> Principal:
        """Admit a request carrying a valid, unrevoked access token."""
        token = extract_bearer(authorization)
        if not token:
            raise AuthenticationError("No token provided")
        if await self._is_revoked(token):
            self.logger.info("revoked_token_rejected")
            raise AuthenticationError("Token has been revoked")
        try:
            claims = self.tokens.verify(token, expected_type=ACCESS)
            account_type = AccountType(claims.get("userType"))
        except (TokenError, ValueError):
            raise AuthenticationError("Invalid or expired token") from None
        return Principal(
            account_id=str(claims["sub"]),
            email=str(claims.get("email", "")),
            account_type=account_type,
            token=token,
        )

    async def refresh(self, refresh_token: str) -> Tuple[Account, TokenPair]:
        """Exchange a refresh token for a new pair; the old one is revoked.

        The revocation write doubles as the claim on the token: of several
        concurrent refreshes with one token, only the caller that creates the
        entry gets a new pair.
        """
        if await self._is_revoked(refresh_token):
            raise AuthenticationError("Token has been revoked")
        try:
            claims = self.tokens.verify(refresh_token, expected_type=REFRESH)
        except TokenError:
            raise AuthenticationError("Invalid or expired token") from None
        account = await asyncio.to_thread(self.store.get_account, str(claims["sub"]))
        if account is None or not account.is_active:
            self.logger.info("refresh_rejected", account_id=claims.get("sub"))
            raise AuthenticationError("Invalid or expired token")
        if not await self._revoke(refresh_token, claims):
            self.logger.warning("refresh_token_reused", account_id=account.id)
            raise AuthenticationError("Token has been revoked")
        tokens = self._issue_tokens(account)
        self.logger.info("tokens_refreshed", account_id=account.id)
        return account, tokens

    async def get_me(self, principal: Principal) -> Tuple[Account, Optional[Profile]]:
        account = await asyncio.to_thread(self.store.get_account, principal.account_id)
        if account is None:
            raise NotFoundError("User not found")
        profile = await asyncio.to_thread(self.store.get_profile, account.id)
        return account, profile
