import asyncio
from typing import List

import requests
import urllib3
from loguru import logger
from pydantic import ValidationError

from lightbridge.core.errors import MalformedPayload, TransportFailure
from lightbridge.data.models import HueDeviceRecord
from lightbridge.discovery.scanner import Scanner

# Bridges serve a self-signed certificate over https
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

REQUEST_TIMEOUT_SECONDS = 10


class HueScanner(Scanner):
    """Enumerates the lights known to a bridge (a query, not a broadcast listen)."""

    def __init__(self, base_url: str, username: str):
        self.base_url = base_url.rstrip("/")
        self.username = username

    def list_lights(self) -> List[HueDeviceRecord]:
        """Fetch all lights from the bridge.

        Returns:
            List[HueDeviceRecord]: one record per light, keyed by the bridge's light index

        Raises:
            TransportFailure: if the bridge is unreachable or rejects the token
        """
        try:
            response = requests.get(
                f"{self.base_url}/api/{self.username}/lights",
                timeout=REQUEST_TIMEOUT_SECONDS,
                verify=False,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransportFailure(f"Could not list bridge lights: {e}") from e

        # The bridge reports errors as a list, lights as a dict
        if isinstance(data, list):
            descriptions = [
                entry.get("error", {}).get("description", "unknown error") for entry in data
            ]
            raise TransportFailure(f"Bridge refused light listing: {'; '.join(descriptions)}")

        try:
            lights = [
                HueDeviceRecord.model_validate({"id": light_id, **light})
                for light_id, light in data.items()
            ]
        except ValidationError as e:
            raise MalformedPayload(f"Unexpected bridge light listing: {e}") from e

        logger.info(f"Found {len(lights)} bridge lights")
        return lights

    async def scan(self) -> List[HueDeviceRecord]:
        return await asyncio.to_thread(self.list_lights)
