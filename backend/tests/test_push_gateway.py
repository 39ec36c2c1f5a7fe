"""Tests for push gateway result classification and configuration."""
import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from pushfeed.config import Settings
from pushfeed.errors import ConfigurationError
from pushfeed.services.push_gateway import (
    ApnsGateway,
    DeliveryStatus,
    DisabledGateway,
    FcmGateway,
    PushMessage,
    build_gateway,
    classify_apns_result,
    classify_fcm_error,
)

MESSAGE = PushMessage(title="New like", body="Ana liked your post", data={"link": "/status", "count": 2})


class TestApnsClassification:

    @pytest.mark.parametrize("status,description,expected", [
        ("200", None, DeliveryStatus.SUCCESS),
        ("410", "Unregistered", DeliveryStatus.PERMANENT),
        ("400", "BadDeviceToken", DeliveryStatus.PERMANENT),
        ("400", "DeviceTokenNotForTopic", DeliveryStatus.PERMANENT),
        ("429", "TooManyRequests", DeliveryStatus.TRANSIENT),
        ("503", "ServiceUnavailable", DeliveryStatus.TRANSIENT),
        ("400", "PayloadTooLarge", DeliveryStatus.TRANSIENT),
    ])
    def test_classify(self, status, description, expected):
        assert classify_apns_result(status, description) == expected


class FakeApnsClient:
    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    async def send_notification(self, request):
        self.requests.append(request)
        response = self.responses[request.device_token]
        if isinstance(response, Exception):
            raise response
        return response


class TestApnsGateway:

    def test_per_token_outcomes_in_order(self):
        client = FakeApnsClient({
            "ok": SimpleNamespace(status="200", description=None),
            "gone": SimpleNamespace(status="410", description="Unregistered"),
            "busy": SimpleNamespace(status="429", description="TooManyRequests"),
            "broken": ConnectionResetError("stream reset"),
        })
        gateway = ApnsGateway("key.p8", "KEY", "TEAM", "com.example.app", client=client)

        outcomes = asyncio.run(gateway.send_batch(["ok", "gone", "busy", "broken"], MESSAGE))

        assert [o.token for o in outcomes] == ["ok", "gone", "busy", "broken"]
        assert [o.status for o in outcomes] == [
            DeliveryStatus.SUCCESS,
            DeliveryStatus.PERMANENT,
            DeliveryStatus.TRANSIENT,
            DeliveryStatus.TRANSIENT,
        ]
        assert outcomes[1].reason == "Unregistered"

    def test_payload_carries_alert_and_data(self):
        client = FakeApnsClient({"ok": SimpleNamespace(status="200", description=None)})
        gateway = ApnsGateway("key.p8", "KEY", "TEAM", "com.example.app", client=client)

        asyncio.run(gateway.send_batch(["ok"], MESSAGE))

        payload = client.requests[0].message
        assert payload["aps"]["alert"] == {"title": "New like", "body": "Ana liked your post"}
        assert payload["link"] == "/status"


class TestFcmClassification:

    def test_not_found_is_permanent(self):
        assert classify_fcm_error(404, {"error": {"status": "NOT_FOUND"}}) == DeliveryStatus.PERMANENT

    def test_unregistered_detail_is_permanent(self):
        body = {"error": {
            "status": "INVALID_ARGUMENT",
            "details": [{"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError", "errorCode": "UNREGISTERED"}],
        }}
        assert classify_fcm_error(400, body) == DeliveryStatus.PERMANENT

    def test_invalid_registration_token_is_permanent(self):
        body = {"error": {"status": "INVALID_ARGUMENT", "message": "The registration token is not a valid FCM registration token"}}
        assert classify_fcm_error(400, body) == DeliveryStatus.PERMANENT

    def test_other_invalid_argument_is_transient(self):
        body = {"error": {"status": "INVALID_ARGUMENT", "message": "Invalid JSON payload"}}
        assert classify_fcm_error(400, body) == DeliveryStatus.TRANSIENT

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    def test_server_side_errors_are_transient(self, status_code):
        assert classify_fcm_error(status_code, {}) == DeliveryStatus.TRANSIENT


class TestFcmGateway:

    def test_send_batch(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append((request.headers["Authorization"], body))
            token = body["message"]["token"]
            if token == "ok":
                return httpx.Response(200, json={"name": "projects/demo/messages/1"})
            if token == "gone":
                return httpx.Response(404, json={"error": {"status": "NOT_FOUND", "message": "Requested entity was not found."}})
            if token == "busy":
                return httpx.Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}})
            raise httpx.ConnectError("connection refused", request=request)

        gateway = FcmGateway("demo", "secret", transport=httpx.MockTransport(handler))
        outcomes = asyncio.run(gateway.send_batch(["ok", "gone", "busy", "down"], MESSAGE))

        assert [o.status for o in outcomes] == [
            DeliveryStatus.SUCCESS,
            DeliveryStatus.PERMANENT,
            DeliveryStatus.TRANSIENT,
            DeliveryStatus.TRANSIENT,
        ]
        assert outcomes[2].reason == "Quota exceeded"

        authorization, body = seen[0]
        assert authorization == "Bearer secret"
        assert body["message"]["notification"] == {"title": "New like", "body": "Ana liked your post"}
        assert body["message"]["data"] == {"link": "/status", "count": "2"}

    def test_batch_over_ceiling_rejected(self):
        gateway = FcmGateway("demo", "secret")
        with pytest.raises(ValueError):
            asyncio.run(gateway.send_batch([f"t{i}" for i in range(501)], MESSAGE))


class TestBuildGateway:

    def test_disabled(self):
        gateway = build_gateway(Settings(push_provider="disabled"))
        assert isinstance(gateway, DisabledGateway)
        outcomes = asyncio.run(gateway.send_batch(["a"], MESSAGE))
        assert outcomes[0].status == DeliveryStatus.TRANSIENT

    def test_fcm(self):
        gateway = build_gateway(Settings(push_provider="fcm", fcm_project_id="demo", fcm_access_token="secret"))
        assert isinstance(gateway, FcmGateway)

    def test_fcm_without_credentials_is_fatal(self):
        with pytest.raises(ConfigurationError):
            build_gateway(Settings(push_provider="fcm", fcm_project_id="demo", fcm_access_token=None))

    def test_apns_without_credentials_is_fatal(self):
        with pytest.raises(ConfigurationError):
            build_gateway(Settings(push_provider="apns", apns_key_path=None))

    def test_unknown_provider_is_fatal(self):
        with pytest.raises(ConfigurationError):
            build_gateway(Settings(push_provider="carrier-pigeon"))
