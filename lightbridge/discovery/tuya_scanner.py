"""
Passive discovery of local-protocol bulbs.

Bulbs broadcast an AES-encrypted JSON announcement every few seconds on UDP
port 6667. The listener collects them for a fixed window and returns one
record per device id.
"""

import asyncio
import hashlib
import json
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad
from loguru import logger
from pydantic import ValidationError

from lightbridge.core.errors import MalformedPayload, TransportFailure
from lightbridge.data.models import TuyaDeviceRecord
from lightbridge.discovery.scanner import Scanner

# Shared broadcast key (same derivation as tuya-convert and tinytuya)
UDP_KEY = hashlib.md5(b"yGAdlopoPVldABfn").digest()

PREFIX_55AA = b"\x00\x00\x55\xaa"
PREFIX_6699 = b"\x00\x00\x66\x99"

HEADER_LENGTH = 20
TRAILER_LENGTH = 8  # crc + suffix

DISCOVERY_PORT = 6667
SCAN_SECONDS = 20


class ScanState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CLOSED = "closed"


def decrypt(payload: bytes, key: bytes = UDP_KEY) -> str:
    """AES-128-ECB decrypt and strip PKCS#7 padding.

    Raises:
        MalformedPayload: if the payload is not a valid ciphertext
    """
    try:
        cipher = AES.new(key, AES.MODE_ECB)
        return unpad(cipher.decrypt(payload), AES.block_size).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Could not decrypt announcement: {e}") from e


def decrypt_announcement(datagram: bytes) -> Optional[str]:
    """Recover the JSON text of an announcement.

    Returns None for frames using the 6699 framing, which is not supported.

    Raises:
        MalformedPayload: if the frame could not be decrypted
    """
    prefix = datagram[:4]
    if prefix == PREFIX_55AA:
        return decrypt(datagram[HEADER_LENGTH:-TRAILER_LENGTH])
    elif prefix == PREFIX_6699:
        logger.warning("Received 6699-framed announcement, which is not supported")
        return None
    return decrypt(datagram)


def parse_announcement(text: str) -> TuyaDeviceRecord:
    try:
        return TuyaDeviceRecord.model_validate(json.loads(text))
    except (ValueError, ValidationError) as e:
        raise MalformedPayload(f"Unexpected announcement content: {e}") from e


class _AnnouncementProtocol(asyncio.DatagramProtocol):
    def __init__(self, scanner: "TuyaScanner"):
        self.scanner = scanner

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.scanner.handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery socket error: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.error(f"Discovery socket closed unexpectedly: {exc}")
        self.scanner.close()


class TuyaScanner(Scanner):
    """UDP listener for local-protocol announcements.

    State machine per scan: IDLE -> LISTENING -> CLOSED, left either when the
    window elapses or when close() is called.
    """

    def __init__(
        self,
        names: Optional[Mapping[str, str]] = None,
        port: int = DISCOVERY_PORT,
        scan_seconds: float = SCAN_SECONDS,
        host: str = "0.0.0.0",
    ):
        self.names = dict(names or {})
        self.port = port
        self.scan_seconds = scan_seconds
        self.host = host
        self.state = ScanState.IDLE
        self.devices_found: Dict[str, TuyaDeviceRecord] = {}
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._closed: Optional[asyncio.Event] = None

    def handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        """Decrypt one datagram and record the device it announces."""
        try:
            text = decrypt_announcement(data)
            if text is None:
                return
            device = parse_announcement(text)
        except MalformedPayload as e:
            logger.warning(f"Dropped datagram from {addr[0]}: {e}")
            return

        if device.name is None and device.id in self.names:
            device = device.model_copy(update={"name": self.names[device.id]})
        if device.id not in self.devices_found:
            logger.info(f"Found local device {device.id} at {device.address}")
        self.devices_found[device.id] = device

    async def scan(self) -> List[TuyaDeviceRecord]:
        """Listen for one scan window and return the devices announced in it.

        Raises:
            TransportFailure: if the UDP port could not be bound
        """
        if self.state == ScanState.LISTENING:
            raise RuntimeError("A scan is already in progress")

        loop = asyncio.get_running_loop()
        self.state = ScanState.IDLE
        self.devices_found = {}
        self._closed = asyncio.Event()
        try:
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _AnnouncementProtocol(self),
                local_addr=(self.host, self.port),
            )
        except OSError as e:
            self.state = ScanState.CLOSED
            raise TransportFailure(f"Could not listen on UDP {self.port}: {e}") from e

        self.state = ScanState.LISTENING
        sockname = self._transport.get_extra_info("sockname")
        logger.info(
            f"Listening for local devices on {sockname[0]}:{sockname[1]} "
            f"for {self.scan_seconds} seconds"
        )

        try:
            await asyncio.wait_for(self._closed.wait(), timeout=self.scan_seconds)
        except asyncio.TimeoutError:
            logger.info(f"Stopped scanning for local devices after {self.scan_seconds} seconds")
        finally:
            self.close()

        return list(self.devices_found.values())

    def close(self) -> None:
        """End the current scan early; scan() resolves with what was found so far."""
        if self.state != ScanState.LISTENING:
            return
        self.state = ScanState.CLOSED
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if self._closed is not None:
            self._closed.set()
