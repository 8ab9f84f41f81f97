import asyncio
from datetime import datetime
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import aiohttp
from loguru import logger
from pydantic import ValidationError

from lightbridge.color.warmth import WarmthTable
from lightbridge.core.errors import OperationResult, Outcome
from lightbridge.core.utils import TaskManager, clamp_percentage, run_device_operation
from lightbridge.data.models import (
    DeviceCredentials,
    HSVColor,
    HueDeviceRecord,
    Scene,
    TuyaDeviceRecord,
)
from lightbridge.discovery.scanner import DeviceRecord, Scanner
from lightbridge.lights.hue_manager import HueManager
from lightbridge.lights.manager import DeviceManager
from lightbridge.lights.transport import TinyTuyaTransport
from lightbridge.lights.tuya_manager import TuyaManager

DeviceIds = Union[str, Iterable[str]]
DeviceOperation = Callable[[DeviceManager], Awaitable[Any]]


class DeviceFactory:
    """Builds the manager for an identity record, or None if it cannot be addressed."""

    def __init__(
        self,
        credentials: Mapping[str, DeviceCredentials],
        warmth_table: WarmthTable,
        hue_base_url: Optional[str] = None,
        hue_username: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.credentials = credentials
        self.warmth_table = warmth_table
        self.hue_base_url = hue_base_url
        self.hue_username = hue_username
        self.session = session

    def __call__(self, record: DeviceRecord) -> Optional[DeviceManager]:
        if isinstance(record, TuyaDeviceRecord):
            return self._build_tuya(record)
        if isinstance(record, HueDeviceRecord):
            return self._build_hue(record)
        logger.warning(f"Unknown device record {record!r}")
        return None

    def _build_tuya(self, record: TuyaDeviceRecord) -> Optional[TuyaManager]:
        credentials = self.credentials.get(record.id)
        if credentials is None:
            logger.warning(f"Skipping local device {record.id}: no key configured")
            return None
        try:
            version = float(record.version)
        except ValueError:
            version = credentials.version
        transport = TinyTuyaTransport(
            record.id, credentials.key, address=record.address, version=version
        )
        return TuyaManager(record.id, transport, name=record.name or credentials.name)

    def _build_hue(self, record: HueDeviceRecord) -> Optional[HueManager]:
        if not self.hue_base_url or not self.hue_username:
            logger.warning(f"Skipping bridge light {record.id}: no bridge configured")
            return None
        return HueManager(
            record.id,
            self.hue_base_url,
            self.hue_username,
            int(record.id),
            self.warmth_table,
            name=record.name or None,
            session=self.session,
        )


def _identity(record: DeviceRecord) -> Tuple:
    if isinstance(record, TuyaDeviceRecord):
        return ("tuya", record.id, record.address, record.version)
    return ("hue", record.id, record.name)


def _record_payload(record: DeviceRecord) -> Dict[str, Any]:
    return {"kind": record.kind.value, **record.model_dump(mode="json")}


def _normalize_ids(device_ids: DeviceIds) -> List[str]:
    if isinstance(device_ids, str):
        device_ids = [device_ids]
    return list(dict.fromkeys(device_ids))


def _rejected_input(what: str, error: Exception) -> OperationResult:
    logger.warning(f"Rejected {what} input: {error}")
    return OperationResult(Outcome.MALFORMED_PAYLOAD, {"completed": False, "error": str(error)})


class LightController:
    """
    Owns the device registry and fans operations out to device managers.

    The registry is an immutable snapshot replaced wholesale by rescan(), so a
    request either sees the old map or the new one. Every operation returns an
    OperationResult; nothing here raises for a device-level failure.
    """

    def __init__(
        self,
        scanners: Sequence[Scanner],
        factory: Callable[[DeviceRecord], Optional[DeviceManager]],
    ):
        self.scanners = list(scanners)
        self.factory = factory
        self._registry: Mapping[str, DeviceManager] = MappingProxyType({})
        self._records: Mapping[str, DeviceRecord] = MappingProxyType({})

    @property
    def devices(self) -> Mapping[str, DeviceManager]:
        return self._registry

    def resolve(self, device_id: str) -> Optional[DeviceManager]:
        return self._registry.get(device_id)

    #
    # Registry
    #

    def list_devices(self) -> OperationResult:
        return OperationResult(
            Outcome.SUCCESS, [_record_payload(record) for record in self._records.values()]
        )

    async def rescan(self) -> OperationResult:
        """Run every scanner and swap in a registry built from their results.

        If any scanner fails the current registry is kept untouched.
        """
        results = await asyncio.gather(
            *(scanner.scan() for scanner in self.scanners), return_exceptions=True
        )
        failed = False
        for scanner, result in zip(self.scanners, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"{type(scanner).__name__} failed: {result}")
                failed = True
        if failed:
            return OperationResult(Outcome.TRANSPORT_FAILURE, self.list_devices().payload)

        records: Dict[str, DeviceRecord] = {}
        for result in results:
            for record in result:
                records[record.id] = record

        managers: Dict[str, DeviceManager] = {}
        for device_id, record in records.items():
            previous = self._records.get(device_id)
            if previous is not None and device_id in self._registry and _identity(previous) == _identity(record):
                # Keep the live manager so its lock and pending timer survive
                managers[device_id] = self._registry[device_id]
                continue
            manager = self.factory(record)
            if manager is not None:
                managers[device_id] = manager

        self._records = MappingProxyType(
            {device_id: records[device_id] for device_id in managers}
        )
        self._registry = MappingProxyType(managers)
        logger.info(f"Registry now holds {len(managers)} devices")
        return self.list_devices()

    def refresher(self, interval: float) -> TaskManager:
        """Get a TaskManager that re-scans every `interval` seconds.

        Returns:
            A TaskManager that can be used with async with
        """

        async def refresh_forever():
            while True:
                await asyncio.sleep(interval)
                await self.rescan()

        return TaskManager(refresh_forever, name="Refresher", timeout=1.0)

    #
    # Dispatch
    #

    async def _run_locked(
        self, manager: DeviceManager, operation: DeviceOperation, description: str
    ) -> Tuple[Outcome, Any]:
        async with manager.lock:
            return await run_device_operation(
                operation(manager), f"{description} on {manager.name} failed"
            )

    async def _read(
        self, device_id: str, operation: DeviceOperation, description: str
    ) -> OperationResult:
        manager = self.resolve(device_id)
        if manager is None:
            return OperationResult(Outcome.NOT_FOUND, None)
        outcome, value = await self._run_locked(manager, operation, description)
        return OperationResult(outcome, value)

    async def _write(
        self, device_ids: DeviceIds, operation: DeviceOperation, description: str
    ) -> OperationResult:
        """Admit every target or none, then run the operation on all of them concurrently."""
        ids = _normalize_ids(device_ids)
        registry = self._registry
        missing = [device_id for device_id in ids if device_id not in registry]
        if not ids or missing:
            return OperationResult(Outcome.NOT_FOUND, {"completed": False, "missing": missing})

        managers = [registry[device_id] for device_id in ids]
        results = await asyncio.gather(
            *(self._run_locked(manager, operation, description) for manager in managers)
        )
        outcomes = {manager.device_id: outcome for manager, (outcome, _) in zip(managers, results)}
        completed = all(outcome == Outcome.SUCCESS for outcome in outcomes.values())

        if Outcome.CAPABILITY_MISMATCH in outcomes.values():
            aggregate = Outcome.CAPABILITY_MISMATCH
            completed = False
        elif completed:
            aggregate = Outcome.SUCCESS
        elif Outcome.TRANSPORT_FAILURE in outcomes.values():
            aggregate = Outcome.TRANSPORT_FAILURE
        else:
            aggregate = Outcome.MALFORMED_PAYLOAD

        logger.debug(f"{description} on {ids}: {aggregate.value}")
        return OperationResult(
            aggregate,
            {
                "completed": completed,
                "devices": {device_id: outcome.value for device_id, outcome in outcomes.items()},
            },
        )

    #
    # Reads
    #

    async def get_state(self, device_id: str) -> OperationResult:
        return await self._read(device_id, lambda m: m.get_state(), "Read state")

    async def get_toggle(self, device_id: str) -> OperationResult:
        async def read(manager: DeviceManager):
            return {"toggle": await manager.get_toggle()}

        return await self._read(device_id, read, "Read toggle")

    async def get_brightness(self, device_id: str) -> OperationResult:
        async def read(manager: DeviceManager):
            return {"brightness": await manager.get_brightness()}

        return await self._read(device_id, read, "Read brightness")

    async def get_color(self, device_id: str) -> OperationResult:
        async def read(manager: DeviceManager):
            return (await manager.get_color()).model_dump()

        return await self._read(device_id, read, "Read colour")

    async def get_mode(self, device_id: str) -> OperationResult:
        async def read(manager: DeviceManager):
            return {"mode": (await manager.get_mode()).value}

        return await self._read(device_id, read, "Read mode")

    async def get_warmth(self, device_id: str) -> OperationResult:
        async def read(manager: DeviceManager):
            return {"warmth": await manager.get_warmth()}

        return await self._read(device_id, read, "Read warmth")

    async def get_scene(self, device_id: str) -> OperationResult:
        async def read(manager: DeviceManager):
            return (await manager.get_scene()).model_dump(mode="json")

        return await self._read(device_id, read, "Read scene")

    #
    # Writes
    #

    async def put_toggle(self, device_ids: DeviceIds, on: bool) -> OperationResult:
        return await self._write(device_ids, lambda m: m.set_toggle(on), "Set toggle")

    async def put_brightness(self, device_ids: DeviceIds, brightness: float) -> OperationResult:
        brightness = clamp_percentage(brightness)
        return await self._write(
            device_ids, lambda m: m.set_brightness(brightness), "Set brightness"
        )

    async def put_color(
        self, device_ids: DeviceIds, color: Union[HSVColor, Mapping[str, float]]
    ) -> OperationResult:
        if not isinstance(color, HSVColor):
            try:
                color = HSVColor.clamped(color["h"], color["s"], color["v"])
            except (KeyError, TypeError, ValueError) as e:
                return _rejected_input("colour", e)
        return await self._write(device_ids, lambda m: m.set_color(color), "Set colour")

    async def put_mode(self, device_ids: DeviceIds, mode: str) -> OperationResult:
        return await self._write(device_ids, lambda m: m.set_mode(mode), "Set mode")

    async def put_warmth(self, device_ids: DeviceIds, warmth: float) -> OperationResult:
        """Warmth is looked up exactly; values off the calibration table are not rounded onto it."""
        return await self._write(device_ids, lambda m: m.set_warmth(warmth), "Set warmth")

    async def put_scene(
        self, device_ids: DeviceIds, scene: Union[Scene, Mapping[str, Any]]
    ) -> OperationResult:
        if not isinstance(scene, Scene):
            try:
                scene = Scene.model_validate(scene)
            except ValidationError as e:
                return _rejected_input("scene", e)
        return await self._write(
            device_ids, lambda m: m.set_scene(scene.model_copy(deep=True)), "Set scene"
        )

    async def put_timer(self, device_ids: DeviceIds, when: datetime) -> OperationResult:
        return await self._write(device_ids, lambda m: m.set_timer(when), "Set timer")
