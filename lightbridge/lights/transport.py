"""
Connection-oriented access to a local-protocol bulb's datapoints.

The managers only depend on the LocalTransport protocol; TinyTuyaTransport
adapts the blocking tinytuya client to it.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol

import tinytuya
from loguru import logger

from lightbridge.core.errors import TransportFailure


class LocalTransport(Protocol):
    async def find(self) -> bool: ...

    async def connect(self) -> bool: ...

    async def get(self, dps: int) -> Any: ...

    async def set(self, dps: int, value: Any) -> Any: ...

    async def set_many(self, values: Dict[int, Any]) -> Any: ...

    async def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...


def _check(response: Any, action: str) -> Any:
    # tinytuya reports failures as a dict carrying "Error" instead of raising
    if isinstance(response, dict) and "Error" in response:
        raise TransportFailure(f"{action} failed: {response['Error']} ({response.get('Err')})")
    return response


class TinyTuyaTransport:
    """LocalTransport backed by a persistent tinytuya socket."""

    def __init__(
        self,
        device_id: str,
        local_key: str,
        address: Optional[str] = None,
        version: float = 3.3,
    ):
        self.device_id = device_id
        self.local_key = local_key
        self.address = address
        self.version = version
        self._device: Optional[tinytuya.BulbDevice] = None

    async def find(self) -> bool:
        """Locate the bulb on the network; a known address needs no lookup."""
        if self.address:
            return True
        found = await asyncio.to_thread(tinytuya.find_device, dev_id=self.device_id)
        if not found or not found.get("ip"):
            raise TransportFailure(f"Device {self.device_id} not found on the network")
        self.address = found["ip"]
        if found.get("version"):
            self.version = float(found["version"])
        logger.debug(f"Located {self.device_id} at {self.address} (v{self.version})")
        return True

    def _open(self) -> Dict[str, Any]:
        device = tinytuya.BulbDevice(
            self.device_id,
            address=self.address,
            local_key=self.local_key,
            version=self.version,
            persist=True,
        )
        try:
            status = _check(device.status(), f"Connect to {self.device_id}")
        except TransportFailure:
            device.close()
            raise
        self._device = device
        return status

    async def connect(self) -> bool:
        if self.address is None:
            raise TransportFailure(f"Device {self.device_id} has no known address")
        try:
            await asyncio.to_thread(self._open)
        except OSError as e:
            raise TransportFailure(f"Connect to {self.device_id} failed: {e}") from e
        return True

    def _require_device(self) -> tinytuya.BulbDevice:
        if self._device is None:
            raise TransportFailure(f"Device {self.device_id} is not connected")
        return self._device

    async def _call(self, action: str, func, *args, **kwargs) -> Any:
        try:
            response = await asyncio.to_thread(func, *args, **kwargs)
        except OSError as e:
            raise TransportFailure(f"{action} failed: {e}") from e
        return _check(response, action)

    async def get(self, dps: int) -> Any:
        device = self._require_device()
        status = await self._call(f"Read of {self.device_id}", device.status)
        try:
            return status["dps"][str(dps)]
        except (KeyError, TypeError) as e:
            raise TransportFailure(f"Device {self.device_id} did not report datapoint {dps}") from e

    async def set(self, dps: int, value: Any) -> Any:
        device = self._require_device()
        return await self._call(f"Write of {self.device_id}", device.set_value, dps, value)

    async def set_many(self, values: Dict[int, Any]) -> Any:
        device = self._require_device()
        data = {str(dps): value for dps, value in values.items()}
        return await self._call(
            f"Write of {self.device_id}", device.set_multiple_values, data, nowait=True
        )

    async def disconnect(self) -> None:
        device, self._device = self._device, None
        if device is not None:
            await asyncio.to_thread(device.close)

    def is_connected(self) -> bool:
        return self._device is not None
