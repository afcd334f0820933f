"""
Per-platform session cookie store.

Credentials arrive three ways: pushed by the browser extension
(POST /api/cookies), fetched from the credential backend (refresh), or
attached inline to a download request. Every write replaces the platform's
record wholesale; the last writer wins. Expired records are kept so their
status can still be shown, but usable() never returns them.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from . import config
from .backend_client import BackendClient
from .models import CredentialStatus, PlatformCredential
from .platforms import CREDENTIAL_PLATFORMS, Platform

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept epoch millis, epoch seconds, ISO-8601 strings or Firestore {_seconds}."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("_seconds", value.get("seconds"))
        if value is None:
            return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return parse_timestamp(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class CredentialStore:
    """In-memory credential map shared by all requests."""

    def __init__(
        self,
        backend: Optional[BackendClient] = None,
        clock: Clock = utc_now,
        expiry_days: Optional[Dict[str, int]] = None,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._expiry_days = dict(expiry_days or config.COOKIE_EXPIRY_DAYS)
        self._records: Dict[Platform, PlatformCredential] = {}

    def now(self) -> datetime:
        return self._clock()

    def expiry_days(self, platform: Platform) -> int:
        return self._expiry_days.get(platform.value, config.INLINE_COOKIE_EXPIRY_DAYS)

    def get(self, platform: Platform) -> Optional[PlatformCredential]:
        return self._records.get(platform)

    def usable(self, platform: Platform) -> Optional[PlatformCredential]:
        """The stored credential if it can be used right now, else None."""
        credential = self._records.get(platform)
        if credential is not None and credential.is_usable(self.now()):
            return credential
        return None

    def submit(self, platform: Platform, material: str, expiry_days: Optional[int] = None) -> PlatformCredential:
        """Store externally pushed cookies, replacing whatever was there."""
        days = expiry_days if expiry_days is not None else self.expiry_days(platform)
        synced_at = self.now()
        credential = PlatformCredential(
            platform=platform,
            material=material,
            synced_at=synced_at,
            expires_at=synced_at + timedelta(days=days),
        )
        self._records[platform] = credential
        logger.info(f"🍪 Stored {platform.value} cookies (expires in {days} days)")
        return credential

    async def refresh(self, platform: Platform) -> Optional[PlatformCredential]:
        """
        Pull the platform's cookies from the credential backend.

        Failures (backend unreachable, malformed payload, no cookies stored)
        leave the current record untouched and return None.
        """
        if self._backend is None:
            return None

        try:
            reply = await self._backend.get_json(f"/cookies/{platform.value}")
        except Exception as e:
            logger.error(f"Failed to fetch {platform.value} cookies: {e}")
            return None

        if not reply.ok:
            logger.warning(f"⚠️ Could not refresh {platform.value} cookies: {reply.error}")
            return None

        data = reply.payload
        material = data.get("cookies")
        if not data.get("success") or not isinstance(material, str) or not material.strip():
            logger.info(f"ℹ️ Backend has no {platform.value} cookies")
            return None

        synced_at = parse_timestamp(data.get("syncedAt")) or self.now()
        expires_at = parse_timestamp(data.get("expiresAt")) or (
            synced_at + timedelta(days=self.expiry_days(platform))
        )
        credential = PlatformCredential(
            platform=platform,
            material=material,
            synced_at=synced_at,
            expires_at=expires_at,
        )
        self._records[platform] = credential
        logger.info(f"🍪 Loaded {platform.value} cookies from backend via {reply.base_url}")
        return credential

    async def load_all(self) -> None:
        logger.info("📂 Loading cookies from credential backend...")
        for platform in CREDENTIAL_PLATFORMS:
            await self.refresh(platform)

    def status(self, platform: Platform) -> CredentialStatus:
        credential = self._records.get(platform)
        if credential is None or not credential.material:
            return CredentialStatus(synced=False)

        now = self.now()
        expired = now >= credential.expires_at
        remaining = (credential.expires_at - now).total_seconds() / 86400
        return CredentialStatus(
            synced=True,
            expired=expired,
            synced_at=credential.synced_at,
            expires_at=credential.expires_at,
            days_remaining=0 if expired else math.ceil(remaining),
        )

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {p.value: self.status(p).to_wire() for p in CREDENTIAL_PLATFORMS}
