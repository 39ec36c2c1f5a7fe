"""Push gateways - APNs (aioapns) and FCM HTTP v1 (httpx).

Every gateway takes a batch of device tokens and returns one outcome per
token, in input order. Outcomes use a two-class failure taxonomy:
PERMANENT means the token will never accept pushes again and should be
pruned, TRANSIENT means a retry may succeed. Native client exceptions are
mapped to TRANSIENT and never leak to callers.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Sequence

import httpx
from aioapns import APNs, NotificationRequest, PushType

from ..config import Settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# FCM multicast ceiling, also used for APNs batches
DEFAULT_MAX_BATCH_SIZE = 500

APNS_PERMANENT_REASONS = {"Unregistered", "BadDeviceToken", "DeviceTokenNotForTopic"}

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    PERMANENT = "permanent"
    TRANSIENT = "transient"


@dataclass
class PushMessage:
    """Content shown by the device."""
    title: str
    body: str
    data: Optional[dict] = None
    badge: Optional[int] = None


@dataclass
class TokenOutcome:
    """Delivery result for one token."""
    token: str
    status: DeliveryStatus
    reason: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS


class PushGateway:
    """Base class for push gateways."""

    name = "base"
    max_batch_size = DEFAULT_MAX_BATCH_SIZE

    async def send_batch(self, tokens: Sequence[str], message: PushMessage) -> List[TokenOutcome]:
        """Send ``message`` to every token and report per-token outcomes."""
        if len(tokens) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(tokens)} tokens exceeds {self.name} limit of {self.max_batch_size}"
            )
        if not tokens:
            return []
        return await self._send(list(tokens), message)

    async def _send(self, tokens: List[str], message: PushMessage) -> List[TokenOutcome]:
        raise NotImplementedError

    async def close(self):
        """Release any client resources."""


class DisabledGateway(PushGateway):
    """Gateway used when push is turned off. Every token fails transiently."""

    name = "disabled"

    async def _send(self, tokens: List[str], message: PushMessage) -> List[TokenOutcome]:
        logger.debug("Push notifications disabled, skipping batch")
        return [TokenOutcome(token, DeliveryStatus.TRANSIENT, "push disabled") for token in tokens]


def classify_apns_result(status: Optional[str], description: Optional[str]) -> DeliveryStatus:
    """Map an APNs response to a delivery status."""
    if status == "200":
        return DeliveryStatus.SUCCESS
    if status == "410" or description in APNS_PERMANENT_REASONS:
        return DeliveryStatus.PERMANENT
    return DeliveryStatus.TRANSIENT


class ApnsGateway(PushGateway):
    """Gateway for iOS devices via APNs."""

    name = "apns"

    def __init__(
        self,
        key_path: str,
        key_id: str,
        team_id: str,
        bundle_id: str,
        use_sandbox: bool = True,
        client: Optional[APNs] = None,
    ):
        self._client = client or APNs(
            key=key_path,
            key_id=key_id,
            team_id=team_id,
            topic=bundle_id,
            use_sandbox=use_sandbox,
        )
        logger.info(f"APNs client configured (sandbox={use_sandbox})")

    def _build_payload(self, message: PushMessage) -> dict:
        aps = {"alert": {"title": message.title, "body": message.body}, "sound": "default"}
        if message.badge is not None:
            aps["badge"] = message.badge

        # Combine aps with custom data
        payload = {"aps": aps}
        if message.data:
            payload.update(message.data)
        return payload

    async def _send_one(self, token: str, payload: dict) -> TokenOutcome:
        request = NotificationRequest(
            device_token=token,
            message=payload,
            push_type=PushType.ALERT,
        )
        try:
            response = await self._client.send_notification(request)
        except Exception as e:
            logger.warning(f"APNs request failed (token: {token[:16]}...): {e}")
            return TokenOutcome(token, DeliveryStatus.TRANSIENT, str(e))

        status = classify_apns_result(response.status, response.description)
        if status != DeliveryStatus.SUCCESS:
            logger.warning(
                f"Push notification failed: {response.description} "
                f"(token: {token[:16]}...)"
            )
        return TokenOutcome(token, status, None if status == DeliveryStatus.SUCCESS else response.description)

    async def _send(self, tokens: List[str], message: PushMessage) -> List[TokenOutcome]:
        payload = self._build_payload(message)
        # aioapns multiplexes concurrent requests over its HTTP/2 connections
        return list(await asyncio.gather(*[self._send_one(token, payload) for token in tokens]))


def classify_fcm_error(status_code: int, body: dict) -> DeliveryStatus:
    """Map an FCM v1 error response to a delivery status."""
    error = body.get("error", {}) if isinstance(body, dict) else {}
    error_status = error.get("status")
    error_codes = {
        detail.get("errorCode")
        for detail in error.get("details", [])
        if isinstance(detail, dict)
    }
    message = (error.get("message") or "").lower()

    if status_code == 404 or error_status == "NOT_FOUND" or "UNREGISTERED" in error_codes:
        return DeliveryStatus.PERMANENT
    if error_status == "INVALID_ARGUMENT" and "registration token" in message:
        return DeliveryStatus.PERMANENT
    return DeliveryStatus.TRANSIENT


class FcmGateway(PushGateway):
    """Gateway for web and Android devices via Firebase Cloud Messaging HTTP v1."""

    name = "fcm"

    def __init__(
        self,
        project_id: str,
        access_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = FCM_SEND_URL.format(project_id=project_id)
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    def _build_payload(self, message: PushMessage, token: str) -> dict:
        msg = {
            "token": token,
            "notification": {"title": message.title, "body": message.body},
        }
        if message.data:
            # FCM data values must be strings
            msg["data"] = {k: str(v) for k, v in message.data.items()}
        if message.badge is not None:
            msg["apns"] = {"payload": {"aps": {"badge": message.badge}}}
        return {"message": msg}

    async def _send_one(self, client: httpx.AsyncClient, token: str, message: PushMessage) -> TokenOutcome:
        try:
            response = await client.post(self._url, json=self._build_payload(message, token))
        except httpx.HTTPError as e:
            logger.warning(f"FCM request failed (token: {token[:16]}...): {e}")
            return TokenOutcome(token, DeliveryStatus.TRANSIENT, str(e))

        if response.status_code == 200:
            return TokenOutcome(token, DeliveryStatus.SUCCESS)

        try:
            body = response.json()
        except ValueError:
            body = {}
        status = classify_fcm_error(response.status_code, body)
        reason = body.get("error", {}).get("message") if isinstance(body, dict) else None
        logger.warning(
            f"Push notification failed: HTTP {response.status_code} {reason or ''} "
            f"(token: {token[:16]}...)"
        )
        return TokenOutcome(token, status, reason or f"HTTP {response.status_code}")

    async def _send(self, tokens: List[str], message: PushMessage) -> List[TokenOutcome]:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        ) as client:
            return list(await asyncio.gather(*[
                self._send_one(client, token, message) for token in tokens
            ]))


def build_gateway(config: Settings) -> PushGateway:
    """Create the gateway selected by PUSH_PROVIDER.

    Raises:
        ConfigurationError: If the provider is unknown or its credentials are missing
    """
    provider = (config.push_provider or "disabled").lower()

    if provider == "disabled":
        logger.info("Push notifications are disabled")
        return DisabledGateway()

    if provider == "apns":
        if not all([config.apns_key_path, config.apns_key_id, config.apns_team_id, config.apns_bundle_id]):
            raise ConfigurationError("APNs selected but APNS_KEY_PATH/KEY_ID/TEAM_ID/BUNDLE_ID not fully configured")
        return ApnsGateway(
            key_path=config.apns_key_path,
            key_id=config.apns_key_id,
            team_id=config.apns_team_id,
            bundle_id=config.apns_bundle_id,
            use_sandbox=config.apns_use_sandbox,
        )

    if provider == "fcm":
        if not config.fcm_project_id or not config.fcm_access_token:
            raise ConfigurationError("FCM selected but FCM_PROJECT_ID/FCM_ACCESS_TOKEN not configured")
        return FcmGateway(
            project_id=config.fcm_project_id,
            access_token=config.fcm_access_token,
            timeout=config.push_timeout_seconds,
        )

    raise ConfigurationError(f"Unknown push provider: {config.push_provider}")
