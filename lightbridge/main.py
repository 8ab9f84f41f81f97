import argparse
import asyncio
import json
import signal
import sys
from contextlib import AsyncExitStack
from datetime import datetime, timedelta
from typing import List, Optional

from loguru import logger
from pydantic_extra_types.color import Color

from lightbridge.color.warmth import WarmthTable
from lightbridge.core import config
from lightbridge.core.errors import OperationResult, Outcome
from lightbridge.data.models import HSVColor
from lightbridge.discovery.hue_scanner import HueScanner
from lightbridge.discovery.tuya_scanner import TuyaScanner
from lightbridge.lights.controller import DeviceFactory, LightController


def build_controller() -> LightController:
    """Wire configuration, scanners and the manager factory into a controller."""
    credentials = config.load_device_credentials(config.TUYA_DEVICES_FILE)
    warmth_table = WarmthTable.from_file(config.WARMTH_TABLE_FILE)

    scanners = [
        TuyaScanner(
            names={device_id: c.name for device_id, c in credentials.items() if c.name},
            port=config.TUYA_DISCOVERY_PORT,
            scan_seconds=config.SCAN_SECONDS,
        )
    ]
    if config.HUE_BRIDGE_URL:
        scanners.append(HueScanner(config.HUE_BRIDGE_URL, config.HUE_USERNAME))

    factory = DeviceFactory(
        credentials,
        warmth_table,
        hue_base_url=config.HUE_BRIDGE_URL,
        hue_username=config.HUE_USERNAME,
    )
    return LightController(scanners, factory)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lightbridge", description="Control local and bridge lights")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="Discover devices and list them")
    sub.add_parser("serve", help="Keep the registry fresh until interrupted")

    state = sub.add_parser("state", help="Show the state of one device")
    state.add_argument("device")

    toggle = sub.add_parser("toggle", help="Turn devices on or off")
    toggle.add_argument("devices", nargs="+")
    toggle.add_argument("--off", action="store_true")

    brightness = sub.add_parser("brightness", help="Set brightness percentage")
    brightness.add_argument("devices", nargs="+")
    brightness.add_argument("--value", type=float, required=True)

    color = sub.add_parser("color", help="Set colour (any CSS colour, e.g. 'orange' or '#ff8800')")
    color.add_argument("devices", nargs="+")
    color.add_argument("--value", required=True)

    mode = sub.add_parser("mode", help="Set operating mode")
    mode.add_argument("devices", nargs="+")
    mode.add_argument("--value", required=True)

    warmth = sub.add_parser("warmth", help="Set warmth percentage")
    warmth.add_argument("devices", nargs="+")
    warmth.add_argument("--value", type=float, required=True)

    timer = sub.add_parser("timer", help="Turn devices off after a delay")
    timer.add_argument("devices", nargs="+")
    timer.add_argument("--minutes", type=float, required=True)

    return parser


def _report(result: OperationResult) -> int:
    print(json.dumps({"outcome": result.outcome.value, "payload": result.payload}, indent=2))
    return 0 if result.outcome == Outcome.SUCCESS else 1


async def serve(controller: LightController) -> None:
    async with AsyncExitStack() as exit_stack:
        await exit_stack.enter_async_context(
            controller.refresher(config.RESCAN_INTERVAL_SECONDS)
        )
        logger.debug("Started registry refresher")

        # Setup signal handling for clean shutdown
        shutdown_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_requested.set)

        await shutdown_requested.wait()
        logger.info("Shutdown signal received")


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    controller = build_controller()

    result = await controller.rescan()
    if args.command == "scan":
        return _report(result)

    if args.command == "serve":
        await serve(controller)
        return 0
    if args.command == "state":
        return _report(await controller.get_state(args.device))
    if args.command == "toggle":
        return _report(await controller.put_toggle(args.devices, not args.off))
    if args.command == "brightness":
        return _report(await controller.put_brightness(args.devices, args.value))
    if args.command == "color":
        color = HSVColor.from_color(Color(args.value))
        return _report(await controller.put_color(args.devices, color))
    if args.command == "mode":
        return _report(await controller.put_mode(args.devices, args.value))
    if args.command == "warmth":
        return _report(await controller.put_warmth(args.devices, args.value))
    if args.command == "timer":
        result = await controller.put_timer(
            args.devices, datetime.now() + timedelta(minutes=args.minutes)
        )
        if result.ok:
            # Timers live on the event loop, so stay alive until they fire
            await asyncio.sleep(args.minutes * 60 + 1)
        return _report(result)
    return 2


def run() -> None:
    logger.remove()
    logger.add(sys.stderr, level=config.LOG_LEVEL)
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
