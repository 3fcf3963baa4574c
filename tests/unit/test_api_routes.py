"""
Unit tests for API v1 routes.

Tests endpoint responses with real domain services over in-memory
repositories, injected through FastAPI dependency overrides. Only the
identity verifier and the mail transport are mocked.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from account_guard.api.dependencies import (
    get_registration_service,
    get_relay_service,
    get_verification_service,
)
from account_guard.api.errors import register_exception_handlers
from account_guard.api.v1.routes import router
from account_guard.config.settings import get_settings
from account_guard.domain.devices import DeviceRegistry
from account_guard.domain.exceptions import StorageConflict, TransportFailure, Unauthenticated
from account_guard.domain.ports import IdentityVerifier, MailTransport, Purpose
from account_guard.domain.rate_limiter import RateLimiter
from account_guard.domain.relay import RelaySigner
from account_guard.domain.services import RegistrationService, RelayService, VerificationService

FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/120.0"
ANDROID_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) Mobile"


@pytest.fixture
def verifier(identity) -> MagicMock:
    mock = MagicMock(spec=IdentityVerifier)
    mock.verify.return_value = identity
    return mock


@pytest.fixture
def transport() -> MagicMock:
    return MagicMock(spec=MailTransport)


@pytest.fixture
def signer(timer) -> RelaySigner:
    return RelaySigner("relay-secret-0123456789", clock=timer)


@pytest.fixture
def app(verifier, registry, code_store, signer, transport) -> FastAPI:
    """Create test FastAPI application wired to in-memory services."""
    test_app = FastAPI()
    register_exception_handlers(test_app)
    test_app.include_router(router, prefix="/v1")
    test_app.state.pool = None

    test_app.dependency_overrides[get_registration_service] = lambda: RegistrationService(
        identity_verifier=verifier, registry=registry
    )
    test_app.dependency_overrides[get_verification_service] = lambda: VerificationService(
        code_store=code_store
    )
    test_app.dependency_overrides[get_relay_service] = lambda: RelayService(
        signer=signer,
        transport=transport,
        limiter=RateLimiter(max_requests=100, window_seconds=60),
    )
    return test_app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client for the application."""
    return TestClient(app)


def register(client: TestClient, cookie: str | None = None, user_agent: str = FIREFOX_UA):
    headers = {"User-Agent": user_agent, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    if cookie:
        headers["Cookie"] = f"device_id={cookie}"
    return client.post("/v1/devices", json={"auth_token": "token"}, headers=headers)


class TestRegisterDeviceEndpoint:
    """Tests for POST /v1/devices."""

    def test_new_device_returns_id_and_cookie(self, client: TestClient) -> None:
        response = register(client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["is_new_device"] is True
        assert len(body["device_id"]) == 32

        set_cookie = response.headers["set-cookie"].lower()
        assert f"device_id={body['device_id']}" in set_cookie
        assert "httponly" in set_cookie
        assert "secure" in set_cookie
        assert "samesite=strict" in set_cookie
        assert "max-age=31536000" in set_cookie
        assert "path=/" in set_cookie

    def test_cookie_round_trip_reuses_device(self, client: TestClient) -> None:
        first = register(client).json()

        second = register(client, cookie=first["device_id"]).json()

        assert second["device_id"] == first["device_id"]
        assert second["is_new_device"] is False

    def test_device_class_derived_from_user_agent(
        self, client: TestClient, device_repository
    ) -> None:
        client.post(
            "/v1/devices",
            json={"auth_token": "token", "device_type": "desktop"},
            headers={"User-Agent": ANDROID_UA},
        )

        device = device_repository.get_account("user-123").devices[0]
        assert device.device_class.value == "mobile"

    def test_forwarded_header_ignored_by_default(self, client: TestClient, device_repository) -> None:
        register(client)

        device = device_repository.get_account("user-123").devices[0]
        assert device.fingerprint.client_ip == "testclient"

    def test_client_ip_from_first_forwarded_hop_behind_proxy(
        self, client: TestClient, device_repository, monkeypatch
    ) -> None:
        monkeypatch.setattr(get_settings(), "trust_proxy_headers", True)

        register(client)

        device = device_repository.get_account("user-123").devices[0]
        assert device.fingerprint.client_ip == "203.0.113.7"

    def test_invalid_token_returns_401(self, client: TestClient, verifier) -> None:
        verifier.verify.side_effect = Unauthenticated("identity token invalid")

        response = register(client)

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "unauthenticated"}
        assert "set-cookie" not in response.headers

    def test_missing_token_returns_400(self, client: TestClient) -> None:
        response = client.post("/v1/devices", json={})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "invalid_input"}

    def test_rate_limited_returns_429(self, app: FastAPI, verifier, device_repository, clock) -> None:
        limited = DeviceRegistry(
            repository=device_repository,
            limiter=RateLimiter(max_requests=3, window_seconds=300),
            clock=clock,
        )
        app.dependency_overrides[get_registration_service] = lambda: RegistrationService(
            identity_verifier=verifier, registry=limited
        )
        client = TestClient(app)

        statuses = [register(client).status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]
        assert register(client).json() == {"success": False, "error": "rate_limited"}

    def test_storage_conflict_returns_503(self, app: FastAPI) -> None:
        service = MagicMock(spec=RegistrationService)
        service.register_device.side_effect = StorageConflict("could not serialize")
        app.dependency_overrides[get_registration_service] = lambda: service

        response = register(TestClient(app))

        assert response.status_code == 503
        assert response.json() == {"success": False, "error": "storage_conflict"}


class TestDeviceListAndSignOut:
    """Tests for GET /v1/devices and DELETE /v1/devices/current."""

    def test_list_devices(self, client: TestClient) -> None:
        device_id = register(client).json()["device_id"]

        response = client.get("/v1/devices", headers={"Authorization": "Bearer token"})

        assert response.status_code == 200
        devices = response.json()["devices"]
        assert [d["device_id"] for d in devices] == [device_id]
        assert devices[0]["device_class"] == "web"
        assert devices[0]["user_agent"] == FIREFOX_UA

    def test_list_without_bearer_returns_401(self, client: TestClient) -> None:
        response = client.get("/v1/devices")

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "unauthenticated"}

    def test_list_unknown_user_returns_404(self, client: TestClient) -> None:
        response = client.get("/v1/devices", headers={"Authorization": "Bearer token"})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "not_found"}

    def test_sign_out_current_device(self, client: TestClient, device_repository) -> None:
        device_id = register(client).json()["device_id"]

        response = client.delete(
            "/v1/devices/current",
            headers={"Authorization": "Bearer token", "Cookie": f"device_id={device_id}"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert device_repository.get_account("user-123").devices == ()
        assert "device_id=" in response.headers["set-cookie"]

    def test_sign_out_without_cookie(self, client: TestClient) -> None:
        response = client.delete("/v1/devices/current", headers={"Authorization": "Bearer token"})

        assert response.status_code == 200
        assert response.json() == {"success": False}


class TestVerificationEndpoints:
    """Tests for POST /v1/verify-email/send and /verify."""

    def test_send_returns_expiry(self, client: TestClient, relay) -> None:
        response = client.post("/v1/verify-email/send", json={"email": "alice@example.com"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "expires_in_seconds": 600}
        assert len(relay.messages) == 1

    def test_send_reset_code(self, client: TestClient, relay) -> None:
        response = client.post(
            "/v1/verify-email/send", json={"email": "alice@example.com", "purpose": "reset"}
        )

        assert response.json()["expires_in_seconds"] == 1800
        assert relay.messages[0].subject.endswith("Password Reset Code")

    def test_send_never_returns_code(self, client: TestClient, verification_repository) -> None:
        response = client.post("/v1/verify-email/send", json={"email": "alice@example.com"})

        assert "code" not in response.json()

    def test_spoofed_forwarded_for_shares_one_ip_window(self, app: FastAPI, make_code_store) -> None:
        store = make_code_store(limiter=RateLimiter(max_requests=5, window_seconds=900))
        app.dependency_overrides[get_verification_service] = lambda: VerificationService(
            code_store=store
        )
        client = TestClient(app)

        statuses = [
            client.post(
                "/v1/verify-email/send",
                json={"email": f"user{n}@example.com"},
                headers={"X-Forwarded-For": f"198.51.100.{n}"},
            ).status_code
            for n in range(7)
        ]

        assert statuses == [200] * 5 + [429, 429]

    def test_send_invalid_email_returns_400(self, client: TestClient) -> None:
        response = client.post("/v1/verify-email/send", json={"email": "not-an-email"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "invalid_input"}

    def test_send_delivery_failure_returns_502(self, app: FastAPI) -> None:
        service = MagicMock(spec=VerificationService)
        service.send.side_effect = TransportFailure("relay down")
        app.dependency_overrides[get_verification_service] = lambda: service

        response = TestClient(app).post(
            "/v1/verify-email/send", json={"email": "alice@example.com"}
        )

        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "delivery_failed"}

    def test_verify_correct_code(self, client: TestClient, code_store) -> None:
        issued = code_store.issue("alice@example.com", Purpose.VERIFY)

        response = client.post(
            "/v1/verify-email/verify", json={"email": "alice@example.com", "code": issued.code}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}

    def test_verify_failures_share_one_shape(self, client: TestClient, code_store) -> None:
        """Unknown address, wrong code and reused code are indistinguishable."""
        issued = code_store.issue("alice@example.com", Purpose.VERIFY)
        wrong = "100000" if issued.code != "100000" else "100001"
        client.post(
            "/v1/verify-email/verify", json={"email": "alice@example.com", "code": issued.code}
        )

        responses = [
            client.post("/v1/verify-email/verify", json={"email": email, "code": code})
            for email, code in [
                ("nobody@example.com", "123456"),
                ("alice@example.com", wrong),
                ("alice@example.com", issued.code),
            ]
        ]

        assert {r.status_code for r in responses} == {200}
        assert all(r.json() == {"success": False} for r in responses)

    def test_verify_rejects_non_numeric_code(self, client: TestClient) -> None:
        response = client.post(
            "/v1/verify-email/verify", json={"email": "alice@example.com", "code": "12ab56"}
        )

        assert response.status_code == 400


class TestRelayEndpoint:
    """Tests for POST /v1/relay/send-email."""

    PAYLOAD = {"to": "bob@example.com", "subject": "Hello", "text": "Hi Bob"}

    def signed_headers(self, signer: RelaySigner, payload: dict) -> dict:
        timestamp = signer.now()
        return {
            "X-Relay-Timestamp": str(timestamp),
            "X-Relay-Signature": signer.sign(payload, timestamp),
        }

    def test_signed_request_is_delivered(self, client: TestClient, signer, transport) -> None:
        response = client.post(
            "/v1/relay/send-email",
            json=self.PAYLOAD,
            headers=self.signed_headers(signer, self.PAYLOAD),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        message = transport.deliver.call_args.args[0]
        assert message.to == ("bob@example.com",)
        assert message.subject == "Hello"

    def test_missing_signature_returns_401(self, client: TestClient, transport) -> None:
        response = client.post("/v1/relay/send-email", json=self.PAYLOAD)

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "unauthenticated"}
        transport.deliver.assert_not_called()

    def test_tampered_body_returns_401(self, client: TestClient, signer, transport) -> None:
        headers = self.signed_headers(signer, self.PAYLOAD)
        tampered = {**self.PAYLOAD, "to": "mallory@example.com"}

        response = client.post("/v1/relay/send-email", json=tampered, headers=headers)

        assert response.status_code == 401
        transport.deliver.assert_not_called()

    def test_stale_timestamp_returns_401(self, client: TestClient, signer, timer, transport) -> None:
        headers = self.signed_headers(signer, self.PAYLOAD)
        timer.advance(301)

        response = client.post("/v1/relay/send-email", json=self.PAYLOAD, headers=headers)

        assert response.status_code == 401
        transport.deliver.assert_not_called()

    def test_signed_but_malformed_message_returns_400(
        self, client: TestClient, signer, transport
    ) -> None:
        payload = {"to": "not-an-email", "subject": "Hello"}

        response = client.post(
            "/v1/relay/send-email", json=payload, headers=self.signed_headers(signer, payload)
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "invalid_input"}
        transport.deliver.assert_not_called()

    def test_transport_failure_returns_502(self, client: TestClient, signer, transport) -> None:
        transport.deliver.side_effect = TransportFailure("smtp down")

        response = client.post(
            "/v1/relay/send-email",
            json=self.PAYLOAD,
            headers=self.signed_headers(signer, self.PAYLOAD),
        )

        assert response.status_code == 502

    def test_oversized_timestamp_returns_401(self, client: TestClient, transport) -> None:
        response = client.post(
            "/v1/relay/send-email",
            json=self.PAYLOAD,
            headers={"X-Relay-Timestamp": "9" * 400, "X-Relay-Signature": "a" * 64},
        )

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "unauthenticated"}
        transport.deliver.assert_not_called()


    def test_signed_attachments_are_delivered(self, client: TestClient, signer, transport) -> None:
        payload = {
            **self.PAYLOAD,
            "attachments": [
                {"filename": "r.pdf", "content": "JVBERi0=", "content_type": "application/pdf"}
            ],
        }

        response = client.post(
            "/v1/relay/send-email", json=payload, headers=self.signed_headers(signer, payload)
        )

        assert response.status_code == 200
        message = transport.deliver.call_args.args[0]
        assert [a.filename for a in message.attachments] == ["r.pdf"]

    def test_signed_unknown_field_returns_400(self, client: TestClient, signer, transport) -> None:
        payload = {**self.PAYLOAD, "bcc": ["eve@example.com"]}

        response = client.post(
            "/v1/relay/send-email", json=payload, headers=self.signed_headers(signer, payload)
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "invalid_input"}
        transport.deliver.assert_not_called()

class TestUnexpectedErrors:
    """Errors outside the domain taxonomy keep the JSON error shape."""

    def test_unexpected_exception_returns_internal(self, app: FastAPI, caplog) -> None:
        service = MagicMock(spec=VerificationService)
        service.send.side_effect = RuntimeError("pool exhausted")
        app.dependency_overrides[get_verification_service] = lambda: service
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post("/v1/verify-email/send", json={"email": "alice@example.com"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "internal"}
        assert "pool exhausted" in caplog.text
