"""Email bodies for verification and password-reset codes."""

from datetime import timedelta

from .models import EmailMessage
from .ports import Purpose

_SUBJECTS = {
    Purpose.VERIFY: "{app} - Email Verification Code",
    Purpose.RESET: "{app} - Password Reset Code",
}

_INTROS = {
    Purpose.VERIFY: "Welcome to {app}! Please use the verification code below "
    "to complete your account setup:",
    Purpose.RESET: "We received a request to reset your {app} password. "
    "Use the code below to choose a new one:",
}

_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <p style="color: #666; font-size: 16px;">{intro}</p>
  <div style="background: #f8f9fa; border: 2px dashed #e9ecef; padding: 20px; text-align: center;">
    <h1 style="font-size: 32px; color: #007bff; margin: 0; letter-spacing: 5px;">{code}</h1>
  </div>
  <p style="color: #666; font-size: 14px;">
    This code will expire in {minutes} minutes. If you didn't request it, please ignore this email.
  </p>
</div>
"""


def compose_code_message(
    purpose: Purpose, email: str, code: str, ttl: timedelta, app_name: str
) -> EmailMessage:
    minutes = int(ttl.total_seconds() // 60)
    intro = _INTROS[purpose].format(app=app_name)
    text = f"{intro} {code}. This code will expire in {minutes} minutes."
    return EmailMessage(
        to=(email,),
        subject=_SUBJECTS[purpose].format(app=app_name),
        text=text,
        html=_HTML.format(intro=intro, code=code, minutes=minutes),
    )
