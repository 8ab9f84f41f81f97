import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Dict, Optional, TypeVar

from loguru import logger

from lightbridge.core.errors import CapabilityMismatch
from lightbridge.data.models import DeviceKind, HSVColor, Scene

T = TypeVar("T")


async def _unless_unsupported(coro: Awaitable[T]) -> Optional[T]:
    try:
        return await coro
    except CapabilityMismatch:
        return None


class DeviceManager(ABC):
    """
    Uniform handle on one physical light.

    Every concrete manager implements the whole interface. Operations a device
    cannot perform raise CapabilityMismatch instead of being left out, so
    callers never branch on the concrete type.
    """

    kind: DeviceKind

    def __init__(self, device_id: str, name: Optional[str] = None):
        self.device_id = device_id
        self.name = name or device_id
        # Held by the controller around each operation: one in-flight request per device
        self.lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timer_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.device_id!r})"

    @abstractmethod
    async def get_toggle(self) -> bool: ...

    @abstractmethod
    async def set_toggle(self, on: bool) -> None: ...

    @abstractmethod
    async def get_brightness(self) -> int:
        """Brightness percentage 0..100, whatever it physically means on this device."""

    @abstractmethod
    async def set_brightness(self, percentage: int) -> None: ...

    @abstractmethod
    async def get_color(self) -> HSVColor: ...

    @abstractmethod
    async def set_color(self, color: HSVColor) -> None: ...

    @abstractmethod
    async def get_mode(self) -> str: ...

    @abstractmethod
    async def set_mode(self, mode: str) -> None: ...

    @abstractmethod
    async def get_warmth(self) -> Optional[int]:
        """Warmth percentage, or None when not applicable to the current state."""

    @abstractmethod
    async def set_warmth(self, percentage: int) -> None: ...

    @abstractmethod
    async def get_white_temperature(self) -> Optional[int]: ...

    @abstractmethod
    async def get_scene(self) -> Scene: ...

    @abstractmethod
    async def set_scene(self, scene: Scene) -> None: ...

    async def get_state(self) -> Dict[str, Any]:
        """Snapshot of everything readable, as plain data.

        Fields the device cannot report in its current state are None.
        """
        color = await _unless_unsupported(self.get_color())
        return {
            "toggle": await self.get_toggle(),
            "mode": await _unless_unsupported(self.get_mode()),
            "brightness": await _unless_unsupported(self.get_brightness()),
            "color": color.model_dump() if color is not None else None,
            "warmth": await self.get_warmth(),
            "white": await self.get_white_temperature(),
        }

    async def set_timer(self, when: datetime) -> float:
        """Schedule a one-shot toggle-off at an absolute instant.

        A new timer replaces any pending one. Instants in the past fire
        immediately.

        Returns:
            float: the delay in seconds that was scheduled
        """
        now = datetime.now(when.tzinfo)
        delay = max(0.0, (when - now).total_seconds())
        self.cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire_timer)
        logger.info(f"{self.name} will turn off in {delay:.0f} seconds")
        return delay

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def _fire_timer(self) -> None:
        self._timer = None
        self._timer_task = asyncio.create_task(self._timer_off())

    async def _timer_off(self) -> None:
        async with self.lock:
            try:
                await self.set_toggle(False)
                logger.info(f"Timer turned off {self.name}")
            except Exception as e:
                logger.error(f"Timer could not turn off {self.name}: {e}")
