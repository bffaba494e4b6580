"""HTTP client for the Mill open API.

Every endpoint is a ``POST`` with query parameters.  Reads and control
calls authenticate with an ``Access_token`` header; the initial token
exchange uses an ``Authorization_code`` header.  Responses share one
envelope::

    {"errorCode": 0, "message": "...", "statusCode": 200,
     "success": true, "data": {...}}

A call fails with :class:`~millbridge._errors.ApiError` when:

- the transport raises (connection refused, DNS, transport timeout),
- the HTTP status is not 200,
- the body is not a decodable envelope, or the ``data`` member does
  not match the endpoint's schema,
- the envelope's ``errorCode`` is non-zero.

The client does not retry; retry policy belongs to the session manager
and the poll loop.  Translation of :class:`ApiError` into the
component-level taxonomy (``AuthError``, ``FetchError``, ...) happens in
the callers.
"""

from __future__ import annotations

import logging
from typing import Protocol, Self, runtime_checkable

import httpx
from pydantic import BaseModel, ValidationError

from millbridge._errors import ApiError
from millbridge._models import (
    ApiEnvelope,
    AuthCodeData,
    Device,
    DeviceListData,
    Home,
    HomeListData,
    IndependentDeviceListData,
    Room,
    RoomListData,
    TokenData,
)
from millbridge._settings import DEFAULT_API_BASE_URL

logger = logging.getLogger(__name__)

HTTP_OK = 200

APPLY_ACCESS_TOKEN_PATH = "share/applyAccessToken"
REFRESH_TOKEN_PATH = "share/refreshtoken"
DEVICE_CONTROL_PATH = "uds/deviceControlForOpenApi"
INDEPENDENT_DEVICES_PATH = "uds/getIndependentDevices"
DEVICES_BY_ROOM_PATH = "uds/selectDevicebyRoom"
HOME_LIST_PATH = "uds/selectHomeList"
ROOMS_BY_HOME_PATH = "uds/selectRoombyHome"

PARTNER_CODE = "mill"


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


@runtime_checkable
class MillApiPort(Protocol):
    """Vendor API operations used by the session, fetcher and commands."""

    async def exchange_auth_code(
        self, auth_code: str, username: str, password: str
    ) -> TokenData: ...

    async def refresh_token(self, refresh_token: str) -> TokenData: ...

    async def get_homes(self, access_token: str) -> list[Home]: ...

    async def get_rooms(self, access_token: str, home_id: int) -> list[Room]: ...

    async def get_devices(self, access_token: str, room_id: int) -> list[Device]: ...

    async def get_independent_devices(
        self, access_token: str, home_id: int
    ) -> list[Device]: ...

    async def control_device(
        self, access_token: str, device_id: int, hold_temp: int
    ) -> None: ...

    async def request_auth_code(self, partner_url: str, hub_token: str) -> str: ...


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class MillApiClient:
    """Async :class:`MillApiPort` implementation backed by ``httpx``.

    The client owns its :class:`httpx.AsyncClient` unless one is passed
    in.  Use it as an async context manager or call :meth:`aclose`.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._owns_http = http is None
        self._http = http if http is not None else httpx.AsyncClient()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    # -- Session endpoints --------------------------------------------------

    async def exchange_auth_code(
        self, auth_code: str, username: str, password: str
    ) -> TokenData:
        """Exchange an authorization code and account credentials for tokens."""
        envelope = await self._post(
            APPLY_ACCESS_TOKEN_PATH,
            params={"password": password, "username": username},
            headers={"Authorization_code": auth_code},
        )
        return _decode(envelope, TokenData, APPLY_ACCESS_TOKEN_PATH)

    async def refresh_token(self, refresh_token: str) -> TokenData:
        """Exchange a refresh token for a new access/refresh pair."""
        envelope = await self._post(
            REFRESH_TOKEN_PATH,
            params={"refreshtoken": refresh_token},
        )
        return _decode(envelope, TokenData, REFRESH_TOKEN_PATH)

    async def request_auth_code(self, partner_url: str, hub_token: str) -> str:
        """Ask the partner proxy to issue a Mill authorization code."""
        envelope = await self._send(
            partner_url,
            json={"partnerCode": PARTNER_CODE},
            headers={
                "Authorization": f"Bearer {hub_token}",
                "Content-Type": "application/json",
                "Cache-Control": "no-cache",
            },
            label="partner auth-code",
        )
        return _decode(envelope, AuthCodeData, "partner auth-code").authorization_code

    # -- Inventory endpoints ------------------------------------------------

    async def get_homes(self, access_token: str) -> list[Home]:
        envelope = await self._post(HOME_LIST_PATH, access_token=access_token)
        return _decode(envelope, HomeListData, HOME_LIST_PATH).homes

    async def get_rooms(self, access_token: str, home_id: int) -> list[Room]:
        envelope = await self._post(
            ROOMS_BY_HOME_PATH,
            params={"homeId": home_id},
            access_token=access_token,
        )
        rooms = _decode(envelope, RoomListData, ROOMS_BY_HOME_PATH).rooms
        return [room.model_copy(update={"home_id": home_id}) for room in rooms]

    async def get_devices(self, access_token: str, room_id: int) -> list[Device]:
        envelope = await self._post(
            DEVICES_BY_ROOM_PATH,
            params={"roomId": room_id},
            access_token=access_token,
        )
        devices = _decode(envelope, DeviceListData, DEVICES_BY_ROOM_PATH).devices
        return [device.model_copy(update={"room_id": room_id}) for device in devices]

    async def get_independent_devices(
        self, access_token: str, home_id: int
    ) -> list[Device]:
        envelope = await self._post(
            INDEPENDENT_DEVICES_PATH,
            params={"homeId": home_id},
            access_token=access_token,
        )
        devices = _decode(
            envelope, IndependentDeviceListData, INDEPENDENT_DEVICES_PATH
        ).devices
        return [device.model_copy(update={"room_id": None}) for device in devices]

    # -- Control ------------------------------------------------------------

    async def control_device(
        self, access_token: str, device_id: int, hold_temp: int
    ) -> None:
        """Set a hold temperature on one heater.

        Returns normally only when the vendor reports ``errorCode == 0``;
        a missing ``errorCode`` is not taken as success.
        """
        envelope = await self._post(
            DEVICE_CONTROL_PATH,
            params={
                "deviceId": device_id,
                "holdTemp": hold_temp,
                "operation": 1,
                "status": 1,
            },
            access_token=access_token,
        )
        if envelope.error_code is None:
            msg = f"{DEVICE_CONTROL_PATH}: response carries no errorCode"
            raise ApiError(msg)

    # -- Internal -----------------------------------------------------------

    async def _post(
        self,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
        headers: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> ApiEnvelope:
        request_headers = dict(headers or {})
        if access_token is not None:
            request_headers["Access_token"] = access_token
        return await self._send(
            f"{self._base_url}{path}",
            params=params,
            headers=request_headers,
            label=path,
        )

    async def _send(
        self,
        url: str,
        *,
        label: str,
        params: dict[str, str | int] | None = None,
        headers: dict[str, str] | None = None,
        json: dict[str, str] | None = None,
    ) -> ApiEnvelope:
        """POST to *url* and return the validated envelope.

        *label* names the endpoint in logs and errors; the URL itself is
        never logged because query strings carry credentials.
        """
        request_headers = {"Accept": "*/*", **(headers or {})}
        try:
            response = await self._http.post(
                url,
                params=params,
                headers=request_headers,
                json=json,
            )
        except httpx.HTTPError as exc:
            logger.error("Mill API %s: no response (%s)", label, type(exc).__name__)
            msg = f"{label}: request failed: {type(exc).__name__}"
            raise ApiError(msg) from exc

        logger.debug("Mill API %s -> HTTP %d", label, response.status_code)
        if response.status_code != HTTP_OK:
            logger.error(
                "Mill API %s: bad HTTP status %d", label, response.status_code
            )
            msg = f"{label}: bad HTTP status {response.status_code}"
            raise ApiError(msg, status_code=response.status_code)

        try:
            envelope = ApiEnvelope.model_validate_json(response.content)
        except ValidationError as exc:
            msg = f"{label}: undecodable response body"
            raise ApiError(msg, status_code=response.status_code) from exc

        if envelope.error_code not in (0, None):
            msg = (
                f"{label}: vendor error {envelope.error_code}"
                f" ({envelope.message or 'no message'})"
            )
            raise ApiError(
                msg,
                status_code=response.status_code,
                error_code=envelope.error_code,
            )
        return envelope


def _decode[M: BaseModel](envelope: ApiEnvelope, model: type[M], label: str) -> M:
    """Validate the envelope's ``data`` member against *model*."""
    try:
        return model.model_validate(envelope.data or {})
    except ValidationError as exc:
        msg = f"{label}: unexpected response data"
        raise ApiError(msg, error_code=envelope.error_code) from exc
