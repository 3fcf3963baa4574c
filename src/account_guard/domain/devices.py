"""
Device registry - per-user device list merged atomically on login.

Registration runs as one read-modify-write transaction against the user's
account document:

1. A well-formed device id from the client's cookie selects the
   existing-device path. Otherwise a fresh 128-bit id is generated.
2. Existing-device path: the matching entry's last-active time is updated
   in place. If no entry matches (it was evicted or signed out) the
   new-device path is taken with a freshly generated id, since an unknown
   id is never adopted.
3. New-device path: entries with the same fingerprint are dropped, the new
   entry is appended, and the list is truncated to the cap, evicting the
   oldest logins first.
4. A missing account document is created from the identity claims.

After the commit, a companion per-device record is upserted on a
best-effort basis so that audit timestamps come from the storage server
clock rather than from any client.
"""

import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from .exceptions import InvalidInput, NotFound, RateLimited, StorageConflict
from .models import (
    Clock,
    DeviceRegistration,
    DeviceSession,
    Fingerprint,
    IdentityClaims,
    UserAccount,
    utc_now,
)
from .ports import DeviceClass, DeviceRepository, UserStatus
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEVICE_ID_BYTES = 16
DEFAULT_MAX_DEVICES = 10

_DEVICE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone|iPad")
_DESKTOP_PATTERN = re.compile(r"Electron")


def generate_device_id() -> str:
    """128 bits of randomness, hex-encoded."""
    return secrets.token_hex(DEVICE_ID_BYTES)


def is_valid_device_id(value: str | None) -> bool:
    return value is not None and _DEVICE_ID_PATTERN.fullmatch(value) is not None


def classify_user_agent(user_agent: str) -> DeviceClass:
    """Derive the device class from the User-Agent header."""
    if _MOBILE_PATTERN.search(user_agent):
        return DeviceClass.MOBILE
    if _DESKTOP_PATTERN.search(user_agent):
        return DeviceClass.DESKTOP
    return DeviceClass.WEB


@dataclass
class DeviceRegistry:
    """Domain service owning the per-user device list."""

    repository: DeviceRepository
    limiter: RateLimiter
    max_devices: int = DEFAULT_MAX_DEVICES
    clock: Clock = utc_now
    id_factory: Callable[[], str] = generate_device_id

    def __post_init__(self) -> None:
        if self.max_devices < 1:
            raise ValueError("max_devices must be at least 1")

    def register_device(
        self,
        identity: IdentityClaims,
        fingerprint: Fingerprint,
        device_class: DeviceClass,
        existing_device_id: str | None = None,
    ) -> DeviceRegistration:
        """
        Merge the calling device into the user's device list.

        Args:
            identity: Verified identity token claims
            fingerprint: Server-derived user agent and client IP
            device_class: Server-derived device class
            existing_device_id: Device id from the client's cookie, if any

        Returns:
            DeviceRegistration with the device id and whether it is new

        Raises:
            InvalidInput: If the identity carries no user id
            RateLimited: If the user or IP window is exhausted
            StorageConflict: If the transaction could not commit
        """
        if not identity.user_id:
            raise InvalidInput("identity has no subject")
        self._enforce_rate_limit(identity.user_id, fingerprint.client_ip)

        cookie_device_id = existing_device_id if is_valid_device_id(existing_device_id) else None

        with self.repository.transaction(identity.user_id) as unit:
            now = self.clock()
            account, session, is_new = self._merge(
                unit.get(), identity, fingerprint, device_class, cookie_device_id, now
            )
            unit.put(account)

        logger.info(
            "Registered %s device for user %s (new=%s)",
            session.device_class.value,
            identity.user_id,
            is_new,
        )
        self._record_device(identity.user_id, session)
        return DeviceRegistration(device_id=session.device_id, is_new_device=is_new)

    def sign_out_device(self, user_id: str, device_id: str) -> bool:
        """
        Remove a device from the user's list.

        The account goes offline when its last device is removed.

        Returns:
            True if the device was present and removed
        """
        with self.repository.transaction(user_id) as unit:
            account = unit.get()
            if account is None or account.find_device(device_id) is None:
                return False
            now = self.clock()
            devices = tuple(d for d in account.devices if d.device_id != device_id)
            unit.put(
                replace(
                    account,
                    devices=devices,
                    status=UserStatus.ONLINE if devices else UserStatus.OFFLINE,
                    updated_at=now,
                )
            )

        try:
            self.repository.delete_device_record(user_id, device_id)
        except StorageConflict:
            logger.warning("Could not delete device record %s for user %s", device_id, user_id)
        return True

    def list_devices(self, user_id: str) -> tuple[DeviceSession, ...]:
        """
        Raises:
            NotFound: If the user has no account document
        """
        account = self.repository.get_account(user_id)
        if account is None:
            raise NotFound(f"no account for user {user_id}")
        return account.devices

    def _merge(
        self,
        account: UserAccount | None,
        identity: IdentityClaims,
        fingerprint: Fingerprint,
        device_class: DeviceClass,
        cookie_device_id: str | None,
        now: datetime,
    ) -> tuple[UserAccount, DeviceSession, bool]:
        if account is not None and cookie_device_id is not None:
            current = account.find_device(cookie_device_id)
            if current is not None:
                touched = current.touched(now)
                devices = tuple(
                    touched if d.device_id == cookie_device_id else d for d in account.devices
                )
                updated = replace(
                    account,
                    devices=devices,
                    status=UserStatus.ONLINE,
                    last_active_at=now,
                    updated_at=now,
                )
                return updated, touched, False

        session = DeviceSession(
            device_id=self.id_factory(),
            device_class=device_class,
            fingerprint=fingerprint,
            logged_in_at=now,
            last_active_at=now,
        )
        if account is None:
            logger.warning("Account document missing for user %s, creating it", identity.user_id)
            return UserAccount.create(identity, session, now), session, True

        others = sorted(
            (d for d in account.devices if d.fingerprint != fingerprint),
            key=lambda d: d.logged_in_at,
        )
        keep = others[-(self.max_devices - 1):] if self.max_devices > 1 else []
        evicted = len(others) - len(keep)
        if evicted:
            logger.info("Evicted %d oldest device(s) for user %s", evicted, identity.user_id)

        updated = replace(
            account,
            devices=(*keep, session),
            status=UserStatus.ONLINE,
            last_active_at=now,
            updated_at=now,
        )
        return updated, session, True

    def _record_device(self, user_id: str, session: DeviceSession) -> None:
        try:
            self.repository.upsert_device_record(user_id, session)
        except StorageConflict:
            logger.warning(
                "Could not upsert device record %s for user %s", session.device_id, user_id
            )

    def _enforce_rate_limit(self, user_id: str, client_ip: str) -> None:
        for key in (f"user:{user_id}", f"ip:{client_ip}"):
            if not self.limiter.check(key):
                logger.warning("Device registration rate limited for %s", key)
                raise RateLimited(key)
