import json
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import TypeAdapter

from lightbridge.data.models import DeviceCredentials

load_dotenv()

DEFAULT_WARMTH_TABLE_FILE = str(Path(__file__).parent.parent / "data" / "warmth_table.json")

HUE_BRIDGE_URL: Optional[str] = os.getenv("HUE_BRIDGE_URL")
HUE_USERNAME: Optional[str] = os.getenv("HUE_USERNAME")
TUYA_DEVICES_FILE: str = os.getenv("TUYA_DEVICES_FILE", "devices.json")
WARMTH_TABLE_FILE: str = os.getenv("WARMTH_TABLE_FILE", DEFAULT_WARMTH_TABLE_FILE)
SCAN_SECONDS: float = float(os.getenv("SCAN_SECONDS", 20))
TUYA_DISCOVERY_PORT: int = int(os.getenv("TUYA_DISCOVERY_PORT", 6667))
RESCAN_INTERVAL_SECONDS: float = float(os.getenv("RESCAN_INTERVAL_SECONDS", 300))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

if HUE_BRIDGE_URL and not HUE_USERNAME:
    raise ValueError("HUE_USERNAME must be set when HUE_BRIDGE_URL is set")

credentials_adapter = TypeAdapter(Dict[str, DeviceCredentials])


def load_device_credentials(path: str = TUYA_DEVICES_FILE) -> Dict[str, DeviceCredentials]:
    """Load the per-device shared keys for local-protocol bulbs.

    A missing file simply means no local device can be addressed.

    Args:
        path: JSON file mapping device id to {"key", "name", "version"}

    Returns:
        Dict[str, DeviceCredentials]: credentials keyed by device id
    """
    devices_file = Path(path)
    if not devices_file.exists():
        return {}
    with open(devices_file, "r") as f:
        return credentials_adapter.validate_python(json.load(f))
