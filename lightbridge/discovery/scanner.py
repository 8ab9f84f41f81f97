from abc import ABC, abstractmethod
from typing import List, Union

from lightbridge.data.models import HueDeviceRecord, TuyaDeviceRecord

DeviceRecord = Union[TuyaDeviceRecord, HueDeviceRecord]


class Scanner(ABC):
    """A source of device identity records, one snapshot per scan."""

    @abstractmethod
    async def scan(self) -> List[DeviceRecord]:
        """Run one discovery pass and return everything it found."""
