"""
Domain records - Fixed-schema entities for accounts, devices and codes.

Every optional field has an explicit default resolved when the record is
built, so read sites never have to patch up missing values.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from .ports import DeviceClass, Purpose, UserStatus

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Fingerprint:
    """Best-effort client identity: user agent plus client IP."""

    user_agent: str
    client_ip: str


@dataclass(frozen=True)
class DeviceSession:
    """One logged-in device on a user account."""

    device_id: str
    device_class: DeviceClass
    fingerprint: Fingerprint
    logged_in_at: datetime
    last_active_at: datetime

    def touched(self, now: datetime) -> "DeviceSession":
        return replace(self, last_active_at=now)


@dataclass(frozen=True)
class IdentityClaims:
    """Claims extracted from a verified identity token."""

    user_id: str
    email: str | None = None
    name: str | None = None
    picture: str | None = None
    email_verified: bool = False
    expires_at: datetime | None = None


@dataclass(frozen=True)
class UserAccount:
    """User account document, mutated only inside device transactions."""

    user_id: str
    email: str | None
    display_name: str
    photo_url: str | None = None
    about: str = ""
    devices: tuple[DeviceSession, ...] = ()
    status: UserStatus = UserStatus.OFFLINE
    email_verified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_active_at: datetime | None = None

    @classmethod
    def create(
        cls, identity: IdentityClaims, device: DeviceSession, now: datetime
    ) -> "UserAccount":
        """
        Build a fresh account from identity claims.

        Used when a login arrives for a user whose account document was
        never written (partial sign-up failure upstream).
        """
        return cls(
            user_id=identity.user_id,
            email=identity.email,
            display_name=default_display_name(identity),
            photo_url=identity.picture,
            devices=(device,),
            status=UserStatus.ONLINE,
            email_verified=identity.email_verified,
            created_at=now,
            updated_at=now,
            last_active_at=now,
        )

    def find_device(self, device_id: str) -> DeviceSession | None:
        for device in self.devices:
            if device.device_id == device_id:
                return device
        return None


def default_display_name(identity: IdentityClaims) -> str:
    """Name claim, else the email local part, else a generic placeholder."""
    if identity.name:
        return identity.name
    if identity.email:
        return identity.email.split("@")[0]
    return "User"


@dataclass(frozen=True)
class VerificationRecord:
    """Hashed one-time code for a (purpose, email) key."""

    purpose: Purpose
    email: str
    code_hash: str
    expires_at: datetime
    created_at: datetime
    attempts: int = 0
    origin_ip: str | None = None

    @classmethod
    def issue(
        cls,
        purpose: Purpose,
        email: str,
        code_hash: str,
        ttl: timedelta,
        now: datetime,
        origin_ip: str | None = None,
    ) -> "VerificationRecord":
        return cls(
            purpose=purpose,
            email=email,
            code_hash=code_hash,
            expires_at=now + ttl,
            created_at=now,
            attempts=0,
            origin_ip=origin_ip,
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def with_failed_attempt(self) -> "VerificationRecord":
        return replace(self, attempts=self.attempts + 1)


@dataclass(frozen=True)
class IssuedCode:
    """
    Outcome of issuing a verification code.

    The plaintext code is returned to in-process callers only. It is never
    persisted and never included in an API response.
    """

    email: str
    purpose: Purpose
    expires_at: datetime
    code: str = field(repr=False)


@dataclass(frozen=True)
class DeviceRegistration:
    """Outcome of registering a device."""

    device_id: str
    is_new_device: bool


@dataclass(frozen=True)
class Attachment:
    """File carried by a relayed message; ``content`` is encoded per ``encoding``."""

    filename: str
    content: str = field(repr=False)
    content_type: str | None = None
    encoding: str = "base64"

    def to_payload(self) -> dict:
        payload = {"filename": self.filename, "content": self.content, "encoding": self.encoding}
        if self.content_type is not None:
            payload["content_type"] = self.content_type
        return payload


@dataclass(frozen=True)
class EmailMessage:
    """Transactional email handed to the relay."""

    to: tuple[str, ...]
    subject: str
    text: str | None = None
    html: str | None = None
    cc: tuple[str, ...] = ()
    attachments: tuple[Attachment, ...] = ()

    def to_payload(self) -> dict:
        """Plain JSON-compatible form used for signing and transport."""
        payload: dict = {"to": list(self.to), "subject": self.subject}
        if self.cc:
            payload["cc"] = list(self.cc)
        if self.text is not None:
            payload["text"] = self.text
        if self.html is not None:
            payload["html"] = self.html
        if self.attachments:
            payload["attachments"] = [a.to_payload() for a in self.attachments]
        return payload
