"""
API v1 routes.

Defines REST endpoints for device registration, verification codes and
the signed email relay. Routes are plain ``def`` functions: FastAPI runs
them in its thread pool, so blocking storage and relay calls do not stall
the event loop.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Response
from pydantic import ValidationError

from account_guard.api.dependencies import (
    get_bearer_token,
    get_client_ip,
    get_device_cookie,
    get_registration_service,
    get_relay_service,
    get_user_agent,
    get_verification_service,
)
from account_guard.api.models import (
    DeviceListResponse,
    DeviceResponse,
    ErrorResponse,
    RegisterDeviceRequest,
    RegisterDeviceResponse,
    RelayEmailRequest,
    SendCodeRequest,
    SendCodeResponse,
    SuccessResponse,
    VerifyCodeRequest,
)
from account_guard.config.settings import get_settings
from account_guard.domain.exceptions import InvalidInput
from account_guard.domain.services import RegistrationService, RelayService, VerificationService

router = APIRouter(tags=["v1"])

_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing or invalid credentials"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    503: {"model": ErrorResponse, "description": "Storage conflict, safe to retry"},
}


def _set_device_cookie(response: Response, device_id: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.device_cookie_name,
        value=device_id,
        max_age=settings.device_cookie_max_age_seconds,
        path="/",
        secure=True,
        httponly=True,
        samesite="strict",
    )


@router.post(
    "/devices",
    response_model=RegisterDeviceResponse,
    responses=_ERRORS,
    summary="Register the calling device",
    description="Verify the identity token and merge the calling device into the "
    "user's device list. Sets an HttpOnly device cookie valid for one year.",
)
def register_device(
    request_data: RegisterDeviceRequest,
    response: Response,
    user_agent: str = Depends(get_user_agent),
    client_ip: str = Depends(get_client_ip),
    device_cookie: str | None = Depends(get_device_cookie),
    service: RegistrationService = Depends(get_registration_service),
) -> RegisterDeviceResponse:
    """
    Register a device for the authenticated user.

    - **auth_token**: Identity token from the identity provider
    - **device_type**: Client hint, overridden by the server-derived class
    """
    registration = service.register_device(
        auth_token=request_data.auth_token,
        user_agent=user_agent,
        client_ip=client_ip,
        declared_class=request_data.device_type,
        existing_device_id=device_cookie,
    )
    _set_device_cookie(response, registration.device_id)
    return RegisterDeviceResponse(
        device_id=registration.device_id,
        is_new_device=registration.is_new_device,
    )


@router.get(
    "/devices",
    response_model=DeviceListResponse,
    responses={401: _ERRORS[401], 404: {"model": ErrorResponse, "description": "No account"}},
    summary="List the caller's devices",
)
def list_devices(
    auth_token: str = Depends(get_bearer_token),
    service: RegistrationService = Depends(get_registration_service),
) -> DeviceListResponse:
    devices = service.list_devices(auth_token)
    return DeviceListResponse(devices=[DeviceResponse.from_domain(d) for d in devices])


@router.delete(
    "/devices/current",
    response_model=SuccessResponse,
    responses={401: _ERRORS[401], 503: _ERRORS[503]},
    summary="Sign out the calling device",
)
def sign_out_device(
    response: Response,
    auth_token: str = Depends(get_bearer_token),
    device_cookie: str | None = Depends(get_device_cookie),
    service: RegistrationService = Depends(get_registration_service),
) -> SuccessResponse:
    removed = service.sign_out_device(auth_token, device_cookie)
    response.delete_cookie(
        key=get_settings().device_cookie_name,
        path="/",
        secure=True,
        httponly=True,
        samesite="strict",
    )
    return SuccessResponse(success=removed)


@router.post(
    "/verify-email/send",
    response_model=SendCodeResponse,
    responses={
        429: _ERRORS[429],
        502: {"model": ErrorResponse, "description": "Code stored but not delivered"},
        503: _ERRORS[503],
    },
    summary="Send a verification code",
    description="Generate a 6-digit code for the given purpose and email it. "
    "Any earlier code for the same address and purpose stops working.",
)
def send_code(
    request_data: SendCodeRequest,
    client_ip: str = Depends(get_client_ip),
    service: VerificationService = Depends(get_verification_service),
) -> SendCodeResponse:
    service.send(request_data.email, request_data.purpose, client_ip)
    return SendCodeResponse(expires_in_seconds=service.expires_in_seconds(request_data.purpose))


@router.post(
    "/verify-email/verify",
    response_model=SuccessResponse,
    summary="Check a verification code",
)
def verify_code(
    request_data: VerifyCodeRequest,
    client_ip: str = Depends(get_client_ip),
    service: VerificationService = Depends(get_verification_service),
) -> SuccessResponse:
    """
    Check a code. A code is accepted at most once.

    Every failure returns the same ``{"success": false}`` body so responses
    do not reveal whether a code exists for the address.
    """
    accepted = service.verify(
        request_data.email, request_data.code, request_data.purpose, client_ip
    )
    return SuccessResponse(success=accepted)


@router.post(
    "/relay/send-email",
    response_model=SuccessResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed message"},
        401: {"model": ErrorResponse, "description": "Bad, stale or missing signature"},
        429: _ERRORS[429],
        502: {"model": ErrorResponse, "description": "Mail transport failed"},
    },
    summary="Relay a signed email",
    description="Accept a message signed with the shared relay secret. The signature "
    "covers the JSON body and the X-Relay-Timestamp header.",
)
def relay_send_email(
    payload: dict[str, Any] = Body(...),
    x_relay_timestamp: str | None = Header(default=None),
    x_relay_signature: str | None = Header(default=None),
    client_ip: str = Depends(get_client_ip),
    service: RelayService = Depends(get_relay_service),
) -> SuccessResponse:
    # Authenticate against the raw body before any parsing or normalization.
    service.authenticate(payload, x_relay_timestamp, x_relay_signature, client_ip)
    try:
        message = RelayEmailRequest.model_validate(payload)
    except ValidationError:
        raise InvalidInput("relay message is malformed") from None
    service.deliver(message.to_domain())
    return SuccessResponse(success=True)
