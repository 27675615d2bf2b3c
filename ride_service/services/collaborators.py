"""
Narrow interfaces to the services a ride depends on, plus their HTTP adapters.

The ride state machine and the payment ledger only see the Protocols; the app
lifespan wires the httpx-backed implementations, tests wire fakes.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from ride_service.config import Settings
from ride_service.errors import (
    CollaboratorError,
    DeviceControlFailed,
    DeviceNotFound,
    DiscountFailed,
    EquipmentFailed,
    InsuranceFailed,
    LocationFailed,
    MessageGatewayFailed,
    NotificationFailed,
)
from ride_service.schemas.schemas import (
    DeviceInfo,
    DeviceStatus,
    DiscountTerms,
    LocationProfile,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class DeviceClient(Protocol):
    async def get_device(self, device_code: str) -> DeviceInfo: ...
    async def get_latest_status(self, device_code: str) -> DeviceStatus: ...
    async def get_status_timeline(
        self, device_code: str, start: datetime, end: datetime
    ) -> list[DeviceStatus]: ...
    async def start(self, device_code: str) -> None: ...
    async def stop(self, device_code: str) -> None: ...
    async def lock(self, device_code: str) -> None: ...
    async def unlock(self, device_code: str) -> None: ...
    async def lights_on(self, device_code: str) -> None: ...
    async def lights_off(self, device_code: str) -> None: ...
    async def set_max_speed(self, device_code: str, max_speed: Optional[int]) -> None: ...
    async def set_photo(self, device_code: str, photo: Optional[str]) -> None: ...


class InsuranceClient(Protocol):
    async def start(
        self,
        *,
        provider: str,
        user_id: str,
        platform_id: str,
        device_code: str,
        phone: str,
        latitude: float,
        longitude: float,
    ) -> str: ...
    async def end(self, insurance_id: str, ended_at: datetime) -> None: ...
    async def cancel(self, insurance_id: str) -> None: ...


class DiscountClient(Protocol):
    async def get_discount(self, discount_group_id: str, discount_id: str) -> DiscountTerms: ...
    async def lock(self, discount_group_id: str, discount_id: str) -> None: ...
    async def unlock(self, discount_group_id: str, discount_id: str) -> None: ...
    async def mark_used(self, discount_group_id: str, discount_id: str) -> None: ...


class WebhookClient(Protocol):
    async def send(self, platform_id: str, event_type: str, data: dict[str, Any]) -> None: ...


class LocationClient(Protocol):
    async def get_profile(self, latitude: float, longitude: float) -> LocationProfile: ...


class EquipmentTracker(Protocol):
    async def has_unreturned(self, ride_id: str) -> bool: ...


class MessageGateway(Protocol):
    async def send(self, phone: str, template: str, fields: dict[str, Any]) -> None: ...


@dataclass
class Collaborators:
    devices: DeviceClient
    insurance: InsuranceClient
    discounts: DiscountClient
    webhooks: WebhookClient
    locations: LocationClient
    equipment: EquipmentTracker
    messages: MessageGateway


# ---------------------------------------------------------------------------
# HTTP adapters
# ---------------------------------------------------------------------------

class _ServiceClient:
    error_class: type[CollaboratorError] = CollaboratorError

    def __init__(self, base_url: str, access_key: str = "", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.access_key = access_key
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_key}"} if self.access_key else {}

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, headers=self._headers()
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s%s failed: %s", method, self.base_url, path, exc)
            raise self.error_class(details={"path": path, "reason": str(exc)}) from exc

        if response.status_code >= 400:
            self._raise_for_status(response, path)
        if not response.content:
            return {}
        return response.json()

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        logger.error(
            "%s %s returned %s: %s",
            response.request.method, path, response.status_code, response.text[:200],
        )
        raise self.error_class(details={"path": path, "status_code": response.status_code})


class HttpDeviceClient(_ServiceClient):
    error_class = DeviceControlFailed

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        if response.status_code == 404:
            raise DeviceNotFound(details={"path": path})
        super()._raise_for_status(response, path)

    async def get_device(self, device_code: str) -> DeviceInfo:
        data = await self._request("GET", f"/devices/{device_code}")
        return DeviceInfo.model_validate(data["device"])

    async def get_latest_status(self, device_code: str) -> DeviceStatus:
        data = await self._request("GET", f"/devices/{device_code}/status")
        return DeviceStatus.model_validate(data["status"])

    async def get_status_timeline(
        self, device_code: str, start: datetime, end: datetime
    ) -> list[DeviceStatus]:
        data = await self._request(
            "GET",
            f"/devices/{device_code}/status/timeline",
            params={"start": start.isoformat(), "end": end.isoformat()},
        )
        return [DeviceStatus.model_validate(s) for s in data.get("statuses", [])]

    async def start(self, device_code: str) -> None:
        await self._request("POST", f"/devices/{device_code}/start")

    async def stop(self, device_code: str) -> None:
        await self._request("POST", f"/devices/{device_code}/stop")

    async def lock(self, device_code: str) -> None:
        await self._request("POST", f"/devices/{device_code}/lock")

    async def unlock(self, device_code: str) -> None:
        await self._request("POST", f"/devices/{device_code}/unlock")

    async def lights_on(self, device_code: str) -> None:
        await self._request("POST", f"/devices/{device_code}/lights/on", json={"mode": 0, "seconds": 0})

    async def lights_off(self, device_code: str) -> None:
        await self._request("POST", f"/devices/{device_code}/lights/off")

    async def set_max_speed(self, device_code: str, max_speed: Optional[int]) -> None:
        await self._request("PUT", f"/devices/{device_code}/max-speed", json={"max_speed": max_speed})

    async def set_photo(self, device_code: str, photo: Optional[str]) -> None:
        await self._request("PUT", f"/devices/{device_code}/photo", json={"photo": photo})


class HttpInsuranceClient(_ServiceClient):
    error_class = InsuranceFailed

    async def start(
        self,
        *,
        provider: str,
        user_id: str,
        platform_id: str,
        device_code: str,
        phone: str,
        latitude: float,
        longitude: float,
    ) -> str:
        data = await self._request(
            "POST",
            "/insurances",
            json={
                "provider": provider,
                "user_id": user_id,
                "platform_id": platform_id,
                "device_code": device_code,
                "phone": phone,
                "latitude": latitude,
                "longitude": longitude,
            },
        )
        return data["insurance_id"]

    async def end(self, insurance_id: str, ended_at: datetime) -> None:
        await self._request("POST", f"/insurances/{insurance_id}/end", json={"ended_at": ended_at.isoformat()})

    async def cancel(self, insurance_id: str) -> None:
        await self._request("POST", f"/insurances/{insurance_id}/cancel")


class HttpDiscountClient(_ServiceClient):
    error_class = DiscountFailed

    def _path(self, discount_group_id: str, discount_id: str) -> str:
        return f"/discount-groups/{discount_group_id}/discounts/{discount_id}"

    async def get_discount(self, discount_group_id: str, discount_id: str) -> DiscountTerms:
        data = await self._request("GET", self._path(discount_group_id, discount_id))
        return DiscountTerms(
            discount_group_id=discount_group_id,
            discount_id=discount_id,
            **data["discount_group"],
        )

    async def lock(self, discount_group_id: str, discount_id: str) -> None:
        await self._request("POST", f"{self._path(discount_group_id, discount_id)}/lock")

    async def unlock(self, discount_group_id: str, discount_id: str) -> None:
        await self._request("POST", f"{self._path(discount_group_id, discount_id)}/unlock")

    async def mark_used(self, discount_group_id: str, discount_id: str) -> None:
        await self._request("POST", f"{self._path(discount_group_id, discount_id)}/use")


class HttpWebhookClient(_ServiceClient):
    error_class = NotificationFailed

    async def send(self, platform_id: str, event_type: str, data: dict[str, Any]) -> None:
        await self._request(
            "POST",
            f"/platforms/{platform_id}/webhooks",
            json={"type": event_type, "data": data},
        )


class HttpLocationClient(_ServiceClient):
    error_class = LocationFailed

    async def get_profile(self, latitude: float, longitude: float) -> LocationProfile:
        data = await self._request("GET", "/geofences", params={"lat": latitude, "lng": longitude})
        return LocationProfile.model_validate(data["profile"])


class HttpEquipmentTracker(_ServiceClient):
    error_class = EquipmentFailed

    async def has_unreturned(self, ride_id: str) -> bool:
        data = await self._request("GET", f"/rides/{ride_id}/borrowed-equipment")
        borrowed = data.get("borrowed")
        return bool(borrowed) and borrowed.get("status") == "BORROWED"


class HttpMessageGateway(_ServiceClient):
    error_class = MessageGatewayFailed

    def __init__(self, base_url: str, access_key_id: str, secret_access_key: str, timeout: float = 5.0):
        super().__init__(base_url, timeout=timeout)
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key

    def _headers(self) -> dict[str, str]:
        return {
            "X-MESSAGE-GATEWAY-ACCESS-KEY-ID": self.access_key_id,
            "X-MESSAGE-GATEWAY-SECRET-ACCESS-KEY": self.secret_access_key,
        }

    async def send(self, phone: str, template: str, fields: dict[str, Any]) -> None:
        await self._request("POST", "/send", json={"phone": phone, "name": template, "fields": fields})


def build_collaborators(settings: Settings) -> Collaborators:
    return Collaborators(
        devices=HttpDeviceClient(
            settings.device_base_url, settings.device_access_key, settings.device_timeout_seconds
        ),
        insurance=HttpInsuranceClient(
            settings.insurance_base_url, settings.insurance_access_key, settings.insurance_timeout_seconds
        ),
        discounts=HttpDiscountClient(
            settings.discount_base_url, settings.discount_access_key, settings.discount_timeout_seconds
        ),
        webhooks=HttpWebhookClient(
            settings.webhook_base_url, settings.webhook_access_key, settings.webhook_timeout_seconds
        ),
        locations=HttpLocationClient(
            settings.location_base_url, settings.location_access_key, settings.location_timeout_seconds
        ),
        equipment=HttpEquipmentTracker(
            settings.equipment_base_url, settings.equipment_access_key, settings.equipment_timeout_seconds
        ),
        messages=HttpMessageGateway(
            settings.message_gateway_url,
            settings.message_gateway_access_key_id,
            settings.message_gateway_secret_access_key,
            settings.message_gateway_timeout_seconds,
        ),
    )
