import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger
from pydantic import ValidationError

from lightbridge.color.conversions import hsv_to_xy, scale, xy_to_hsv
from lightbridge.color.warmth import WarmthTable
from lightbridge.core.errors import CapabilityMismatch, MalformedPayload, TransportFailure
from lightbridge.core.utils import clamp, clamp_percentage
from lightbridge.data.models import (
    AlertState,
    DeviceKind,
    EffectState,
    HSVColor,
    HueLightState,
    HueMode,
    HueStatePayload,
    Scene,
)
from lightbridge.lights.manager import DeviceManager

HUE_MAX = 65535
CHANNEL_MAX = 254
CT_MIN = 153
CT_MAX = 500
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=10)


def hue_from_degrees(h: float) -> int:
    return int(round(scale(clamp(h, 0, 360), 360, HUE_MAX)))


def degrees_from_hue(hue: int) -> int:
    return int(round(scale(hue, HUE_MAX, 360)))


def channel_from_percentage(percentage: float) -> int:
    return int(round(scale(clamp(percentage, 0, 100), 100, CHANNEL_MAX)))


def percentage_from_channel(value: int) -> int:
    return clamp_percentage(scale(value, CHANNEL_MAX, 100))


def ct_from_percentage(percentage: float) -> int:
    return int(round(CT_MIN + scale(clamp(percentage, 0, 100), 100, CT_MAX - CT_MIN)))


def percentage_from_ct(ct: int) -> int:
    return clamp_percentage(scale(ct - CT_MIN, CT_MAX - CT_MIN, 100))


class HueManager(DeviceManager):
    """
    Manager for a light behind a bridge's v1 REST API.

    State is read with one GET of the light and written with one PUT of a
    partial state object. Only the bridge decides how atomic that PUT is.
    """

    kind = DeviceKind.HUE

    def __init__(
        self,
        device_id: str,
        base_url: str,
        username: str,
        light_index: int,
        warmth_table: WarmthTable,
        name: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(device_id, name)
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.light_index = light_index
        self.warmth_table = warmth_table
        self.session = session

    @property
    def light_url(self) -> str:
        return f"{self.base_url}/api/{self.username}/lights/{self.light_index}"

    async def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None):
        # Create a session if one wasn't provided
        should_close_session = False
        session = self.session
        if session is None:
            session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)
            should_close_session = True

        try:
            async with session.request(method, url, json=payload, ssl=False) as response:
                response.raise_for_status()
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportFailure(f"{method} {url} failed: {e}") from e
        finally:
            if should_close_session:
                await session.close()

    async def get_device_state(self) -> HueLightState:
        data = await self._request("GET", self.light_url)
        if isinstance(data, list):
            raise TransportFailure(f"Bridge refused to read {self.name}: {_describe_errors(data)}")
        try:
            state = HueLightState.model_validate(data["state"])
        except (KeyError, TypeError, ValidationError) as e:
            raise MalformedPayload(f"Unexpected state for {self.name}: {e}") from e
        logger.debug(f"{self.name} state: {state.model_dump(exclude_none=True)}")
        return state

    async def set_device_state(self, payload: HueStatePayload) -> List[Dict[str, Any]]:
        body = payload.to_wire()
        logger.debug(f"{self.name} put state {body}")
        response = await self._request("PUT", f"{self.light_url}/state", body)
        if not isinstance(response, list):
            raise MalformedPayload(f"Unexpected bridge reply for {self.name}: {response!r}")
        if any("error" in entry for entry in response):
            raise TransportFailure(f"Bridge rejected {body} for {self.name}: {_describe_errors(response)}")
        return response

    async def get_toggle(self) -> bool:
        return (await self.get_device_state()).on

    async def set_toggle(self, on: bool) -> None:
        await self.set_device_state(HueStatePayload(on=on))

    async def get_brightness(self) -> int:
        state = await self.get_device_state()
        if state.bri is None:
            raise CapabilityMismatch(f"{self.name} is not dimmable")
        return percentage_from_channel(state.bri)

    async def set_brightness(self, percentage: int) -> None:
        await self.set_device_state(HueStatePayload(bri=channel_from_percentage(percentage)))

    def _color_from_state(self, state: HueLightState) -> HSVColor:
        v = percentage_from_channel(state.bri or 0)
        if state.colormode == HueMode.XY and state.xy is not None:
            return HSVColor.clamped(*xy_to_hsv(*state.xy, v=v))
        if state.hue is None or state.sat is None:
            raise CapabilityMismatch(f"{self.name} has no colour channel")
        return HSVColor.clamped(degrees_from_hue(state.hue), percentage_from_channel(state.sat), v)

    async def get_color(self) -> HSVColor:
        return self._color_from_state(await self.get_device_state())

    async def set_color(self, color: HSVColor) -> None:
        await self.set_device_state(
            HueStatePayload(
                hue=hue_from_degrees(color.h),
                sat=channel_from_percentage(color.s),
                bri=channel_from_percentage(color.v),
            )
        )

    async def get_mode(self) -> HueMode:
        state = await self.get_device_state()
        if state.colormode is None:
            raise CapabilityMismatch(f"{self.name} has no colour modes")
        return state.colormode

    async def set_mode(self, mode: str) -> None:
        """Switch colour space by re-applying the current colour in the target mode."""
        try:
            mode = HueMode(mode)
        except ValueError as e:
            raise CapabilityMismatch(f"{self.name} has no mode {mode!r}") from e

        state = await self.get_device_state()
        if mode == HueMode.CT:
            payload = HueStatePayload(ct=state.ct if state.ct is not None else ct_from_percentage(50))
        elif mode == HueMode.HS:
            color = self._color_from_state(state)
            payload = HueStatePayload(
                hue=hue_from_degrees(color.h), sat=channel_from_percentage(color.s)
            )
        else:
            if state.xy is not None:
                xy = state.xy
            else:
                xy = hsv_to_xy(*self._color_from_state(state).as_tuple())
            payload = HueStatePayload(xy=xy)
        await self.set_device_state(payload)

    async def get_white_temperature(self) -> Optional[int]:
        state = await self.get_device_state()
        if state.ct is None:
            return None
        return percentage_from_ct(state.ct)

    async def set_white_temperature(self, percentage: int) -> None:
        await self.set_device_state(HueStatePayload(ct=ct_from_percentage(percentage)))

    async def get_warmth(self) -> Optional[int]:
        state = await self.get_device_state()
        if state.hue is None or state.sat is None:
            return None
        return self.warmth_table.warmth_for(
            degrees_from_hue(state.hue), percentage_from_channel(state.sat)
        )

    async def set_warmth(self, percentage: int) -> None:
        """Render a calibrated warmth point; brightness is left as it is."""
        pair = self.warmth_table.hue_sat_for(percentage)
        if pair is None:
            raise CapabilityMismatch(f"No warmth calibration for {percentage}%")
        hue, sat = pair
        await self.set_device_state(
            HueStatePayload(hue=hue_from_degrees(hue), sat=channel_from_percentage(sat))
        )

    async def get_scene(self) -> Scene:
        raise CapabilityMismatch(f"{self.name} does not support scenes")

    async def set_scene(self, scene: Scene) -> None:
        raise CapabilityMismatch(f"{self.name} does not support scenes")

    async def set_alert(self, alert: AlertState) -> None:
        """'select' flashes once, 'lselect' flashes for 10 seconds."""
        await self.set_device_state(HueStatePayload(alert=alert))

    async def set_effect(self, effect: EffectState) -> None:
        await self.set_device_state(HueStatePayload(effect=effect))

    async def set_transition_time(self, centiseconds: int) -> None:
        await self.set_device_state(HueStatePayload(transitiontime=max(0, int(centiseconds))))


def _describe_errors(entries: List[Dict[str, Any]]) -> str:
    return "; ".join(
        entry["error"].get("description", "unknown error")
        for entry in entries
        if isinstance(entry, dict) and "error" in entry
    )
