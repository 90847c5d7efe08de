"""
auth/codes.py -- Issue and check 6-digit email verification codes.

The code generator is a plain random.Random owned by the issuer and seeded
once when the issuer is built. Codes are human-facing and short-lived; the
session token path uses the secrets module instead.

verify() is safe against double-spend: the consume step is a conditional
UPDATE in the store, and losing that race reports INVALID.
"""

from __future__ import annotations

import logging
import random
from datetime import timedelta

from auth.models import VerificationCode, VerifyOutcome
from auth.store import CredentialStore, to_iso, utc_now

logger = logging.getLogger("sessiongate.auth.codes")

CODE_MIN = 100000
CODE_MAX = 999999
DEFAULT_CODE_TTL = timedelta(minutes=10)


class VerificationCodeIssuer:
    def __init__(
        self,
        store: CredentialStore,
        ttl: timedelta = DEFAULT_CODE_TTL,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._rng = rng or random.Random()

    def generate(self) -> str:
        """Return a uniformly distributed code in [100000, 999999]."""
        return str(self._rng.randint(CODE_MIN, CODE_MAX))

    def issue(self, email: str) -> VerificationCode:
        """Store a fresh code for email. Earlier outstanding codes are left alone."""
        vc = VerificationCode(
            email=email,
            code=self.generate(),
            expires_at=to_iso(utc_now() + self._ttl),
        )
        vc.id = self._store.save_verification_code(vc)
        return vc

    def verify(self, email: str, code: str) -> VerifyOutcome:
        """Check (email, code) against the most recent matching row and consume it."""
        vc = self._store.find_latest_code(email, code)
        if vc is None:
            return VerifyOutcome.not_found
        if vc.used:
            return VerifyOutcome.invalid
        if to_iso(utc_now()) > vc.expires_at:
            return VerifyOutcome.expired
        if not self._store.consume_code(vc.id):
            logger.info("Verification code for %s consumed concurrently", email)
            return VerifyOutcome.invalid
        return VerifyOutcome.valid

    def cleanup(self, email: str) -> int:
        """Delete expired codes for email. Advisory; verify() never depends on it."""
        removed = self._store.delete_expired_codes(email)
        if removed:
            logger.debug("Removed %d expired verification codes for %s", removed, email)
        return removed
