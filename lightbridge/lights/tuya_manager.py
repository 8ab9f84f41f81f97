"""
Manager for local-protocol bulbs.

Datapoints used:

    20  switch             bool
    21  mode               "white" | "colour" | "scene" | "music"
    22  white brightness   10 - 1000, i.e. 1% - 100%
    24  colour             HHHHSSSSVVVV, s and v in 0 - 1000
    25  scene              see lightbridge.data.scenes
    26  countdown          0 - 86400 seconds, 0 is off

White and coloured light are separate channels on these bulbs: white
brightness does not change the colour's value and vice versa.
"""

from contextlib import asynccontextmanager
from enum import IntEnum
from typing import AsyncIterator, Optional, Tuple

from loguru import logger

from lightbridge.color.conversions import hsv_to_rgb, rgb_to_hsv
from lightbridge.core.errors import (
    CapabilityMismatch,
    LightingError,
    MalformedPayload,
    TransportFailure,
)
from lightbridge.core.utils import clamp, clamp_percentage
from lightbridge.data import scenes
from lightbridge.data.hsv import decode_hsv, encode_hsv
from lightbridge.data.models import DeviceKind, HSVColor, Scene, TuyaMode
from lightbridge.lights.manager import DeviceManager
from lightbridge.lights.transport import LocalTransport

WHITE_BRIGHTNESS_MIN = 10
WHITE_BRIGHTNESS_MAX = 1000
COUNTDOWN_MAX_SECONDS = 86400


class Datapoint(IntEnum):
    SWITCH = 20
    MODE = 21
    WHITE_BRIGHTNESS = 22
    COLOR = 24
    SCENE = 25
    COUNTDOWN = 26


def _parse_mode(value) -> TuyaMode:
    try:
        return TuyaMode(value)
    except ValueError as e:
        raise MalformedPayload(f"Unknown mode {value!r}") from e


class TuyaManager(DeviceManager):
    kind = DeviceKind.TUYA

    def __init__(self, device_id: str, transport: LocalTransport, name: Optional[str] = None):
        super().__init__(device_id, name)
        self.transport = transport

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[LocalTransport]:
        """Scoped access to the transport.

        An already connected transport is used as is. Otherwise the device is
        found and connected first and always disconnected on exit, so each
        operation on an idle bulb is find, connect, act, disconnect. A failure
        at any of those steps surfaces as TransportFailure.
        """
        if self.transport.is_connected():
            yield self.transport
            return

        try:
            await self.transport.find()
            await self.transport.connect()
        except LightingError:
            await self._disconnect_quietly()
            raise
        except Exception as e:
            await self._disconnect_quietly()
            raise TransportFailure(f"Could not connect to {self.name}: {e}") from e

        try:
            yield self.transport
        except LightingError:
            raise
        except Exception as e:
            raise TransportFailure(f"Command to {self.name} failed: {e}") from e
        finally:
            await self._disconnect_quietly()

    async def _disconnect_quietly(self) -> None:
        try:
            await self.transport.disconnect()
        except Exception as e:
            logger.warning(f"Disconnect from {self.name} failed: {e}")

    async def _get(self, dps: Datapoint):
        async with self.connection() as transport:
            value = await transport.get(int(dps))
        logger.debug(f"{self.name} dps {int(dps)} = {value!r}")
        return value

    async def _set(self, dps: Datapoint, value) -> None:
        logger.debug(f"{self.name} set dps {int(dps)} to {value!r}")
        async with self.connection() as transport:
            await transport.set(int(dps), value)

    async def get_state(self):
        async with self.connection():
            return await super().get_state()

    async def get_toggle(self) -> bool:
        return bool(await self._get(Datapoint.SWITCH))

    async def set_toggle(self, on: bool) -> None:
        await self._set(Datapoint.SWITCH, bool(on))

    async def get_mode(self) -> TuyaMode:
        return _parse_mode(await self._get(Datapoint.MODE))

    async def set_mode(self, mode: str) -> None:
        try:
            mode = TuyaMode(mode)
        except ValueError as e:
            raise CapabilityMismatch(f"{self.name} has no mode {mode!r}") from e
        await self._set(Datapoint.MODE, mode.value)

    async def get_white_brightness(self) -> int:
        raw = await self._get(Datapoint.WHITE_BRIGHTNESS)
        return clamp_percentage(raw / 10)

    async def set_white_brightness(self, percentage: int) -> None:
        raw = int(clamp(clamp_percentage(percentage) * 10, WHITE_BRIGHTNESS_MIN, WHITE_BRIGHTNESS_MAX))
        await self._set(Datapoint.WHITE_BRIGHTNESS, raw)

    async def get_color(self) -> HSVColor:
        return decode_hsv(await self._get(Datapoint.COLOR))

    async def set_color(self, color: HSVColor) -> None:
        """Write a colour, switching to colour mode in the same command if needed."""
        raw = encode_hsv(color)
        async with self.connection() as transport:
            mode = _parse_mode(await transport.get(int(Datapoint.MODE)))
            if mode != TuyaMode.COLOR:
                logger.debug(f"{self.name} switching from {mode.value} to colour with {raw}")
                await transport.set_many(
                    {int(Datapoint.MODE): TuyaMode.COLOR.value, int(Datapoint.COLOR): raw}
                )
            else:
                logger.debug(f"{self.name} set colour to {raw}")
                await transport.set(int(Datapoint.COLOR), raw)

    async def get_rgb(self) -> Tuple[int, int, int]:
        return hsv_to_rgb(*(await self.get_color()).as_tuple())

    async def set_rgb(self, r: int, g: int, b: int) -> None:
        await self.set_color(HSVColor.clamped(*rgb_to_hsv(r, g, b)))

    async def get_brightness(self) -> int:
        async with self.connection():
            mode = await self.get_mode()
            if mode == TuyaMode.WHITE:
                return await self.get_white_brightness()
            elif mode == TuyaMode.COLOR:
                return (await self.get_color()).v
            elif mode == TuyaMode.SCENE:
                # Scenes are assumed to share one brightness across segments
                return (await self.get_scene()).segments[0].v
        raise CapabilityMismatch(f"{self.name} has no brightness in {mode.value} mode")

    async def set_brightness(self, percentage: int) -> None:
        percentage = clamp_percentage(percentage)
        async with self.connection():
            mode = await self.get_mode()
            if mode == TuyaMode.WHITE:
                await self.set_white_brightness(percentage)
            elif mode == TuyaMode.COLOR:
                color = await self.get_color()
                await self.set_color(color.model_copy(update={"v": percentage}))
            elif mode == TuyaMode.SCENE:
                scene = await self.get_scene()
                for segment in scene.segments:
                    segment.v = percentage
                await self.set_scene(scene)
            else:
                raise CapabilityMismatch(f"{self.name} has no brightness in {mode.value} mode")

    async def get_warmth(self) -> Optional[int]:
        # Warmth is only rendered through calibrated colours on bridge lights
        return None

    async def set_warmth(self, percentage: int) -> None:
        raise CapabilityMismatch(f"{self.name} does not support warmth")

    async def get_white_temperature(self) -> Optional[int]:
        return None

    async def get_scene(self) -> Scene:
        return scenes.decode(await self._get(Datapoint.SCENE))

    async def set_scene(self, scene: Scene) -> None:
        await self._set(Datapoint.SCENE, scenes.encode(scene))

    async def get_countdown(self) -> int:
        return int(await self._get(Datapoint.COUNTDOWN))

    async def set_countdown(self, seconds: int) -> None:
        """Arm the bulb's own countdown; 0 disarms it."""
        await self._set(Datapoint.COUNTDOWN, int(clamp(seconds, 0, COUNTDOWN_MAX_SECONDS)))
