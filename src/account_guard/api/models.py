"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Every response carries a ``success`` flag; failures add a coarse ``error`` code.
"""

import base64
import binascii
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from account_guard.domain.models import Attachment, DeviceSession, EmailMessage
from account_guard.domain.ports import DeviceClass, Purpose


class RegisterDeviceRequest(BaseModel):
    """Request model for device registration."""

    auth_token: str = Field(..., min_length=1, description="Identity token from the identity provider")
    device_type: DeviceClass = Field(
        default=DeviceClass.WEB,
        description="Client hint only; the server derives the device class from User-Agent",
    )


class RegisterDeviceResponse(BaseModel):
    """Response model for successful device registration."""

    success: bool = True
    device_id: str
    is_new_device: bool


class DeviceResponse(BaseModel):
    """One entry of a user's device list."""

    device_id: str
    device_class: DeviceClass
    user_agent: str
    logged_in_at: datetime
    last_active_at: datetime

    @classmethod
    def from_domain(cls, device: DeviceSession) -> "DeviceResponse":
        return cls(
            device_id=device.device_id,
            device_class=device.device_class,
            user_agent=device.fingerprint.user_agent,
            logged_in_at=device.logged_in_at,
            last_active_at=device.last_active_at,
        )


class DeviceListResponse(BaseModel):
    """Response model for the device list."""

    success: bool = True
    devices: list[DeviceResponse]


class SendCodeRequest(BaseModel):
    """Request model for sending a verification or reset code."""

    email: EmailStr
    purpose: Purpose = Purpose.VERIFY


class SendCodeResponse(BaseModel):
    """Response model for a dispatched code."""

    success: bool = True
    expires_in_seconds: int


class VerifyCodeRequest(BaseModel):
    """Request model for checking a code."""

    email: EmailStr
    code: str = Field(
        ...,
        min_length=6,
        max_length=6,
        pattern=r"^\d{6}$",
        description="6-digit verification code",
    )
    purpose: Purpose = Purpose.VERIFY


class SuccessResponse(BaseModel):
    """Bare success flag."""

    success: bool


class AttachmentModel(BaseModel):
    """One file of a relayed message."""

    model_config = ConfigDict(extra="forbid")

    filename: str = Field(..., min_length=1)
    content: str
    content_type: str | None = None
    encoding: Literal["base64", "7bit", "quoted-printable", "binary"] = "base64"

    @model_validator(mode="after")
    def base64_content_decodes(self) -> "AttachmentModel":
        if self.encoding == "base64":
            try:
                base64.b64decode(self.content, validate=True)
            except binascii.Error:
                raise ValueError("attachment content is not valid base64") from None
        return self

    def to_domain(self) -> Attachment:
        return Attachment(
            filename=self.filename,
            content=self.content,
            content_type=self.content_type,
            encoding=self.encoding,
        )


class RelayEmailRequest(BaseModel):
    """
    Message accepted by the relay endpoint.

    Unknown fields are rejected rather than dropped, so nothing the sender
    signed is silently left out of the delivered message.
    """

    model_config = ConfigDict(extra="forbid")

    to: EmailStr | list[EmailStr]
    cc: EmailStr | list[EmailStr] | None = None
    subject: str = Field(..., min_length=1)
    text: str | None = None
    html: str | None = None
    attachments: list[AttachmentModel] = Field(default_factory=list)

    def to_domain(self) -> EmailMessage:
        return EmailMessage(
            to=_as_tuple(self.to),
            cc=_as_tuple(self.cc),
            subject=self.subject,
            text=self.text,
            html=self.html,
            attachments=tuple(a.to_domain() for a in self.attachments),
        )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = False
    error: str


def _as_tuple(value: str | list[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)
