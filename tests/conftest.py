import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Add the parent directory to sys.path so we can import the project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from lightbridge.color.warmth import WarmthTable
from lightbridge.core.errors import TransportFailure
from lightbridge.data.models import ChangeMode, Scene, SceneSegment


class FakeTransport:
    """In-memory LocalTransport that records every call."""

    def __init__(self, dps: Optional[Dict[int, Any]] = None, connected: bool = False):
        self.dps: Dict[int, Any] = dict(dps or {})
        self.connected = connected
        self.calls: List[Tuple] = []
        self.fail_on: Optional[str] = None

    def _maybe_fail(self, step: str) -> None:
        self.calls.append((step,))
        if self.fail_on == step:
            raise TransportFailure(f"{step} failed")

    async def find(self) -> bool:
        self._maybe_fail("find")
        return True

    async def connect(self) -> bool:
        self._maybe_fail("connect")
        self.connected = True
        return True

    async def get(self, dps: int) -> Any:
        self._maybe_fail("get")
        return self.dps[dps]

    async def set(self, dps: int, value: Any) -> Any:
        self._maybe_fail("set")
        self.calls[-1] = ("set", dps, value)
        self.dps[dps] = value
        return {"dps": {str(dps): value}}

    async def set_many(self, values: Dict[int, Any]) -> Any:
        self._maybe_fail("set_many")
        self.calls[-1] = ("set_many", dict(values))
        self.dps.update(values)
        return None

    async def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def steps(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_transport():
    """Fixture to provide a local bulb in white mode at 50% brightness"""
    return FakeTransport(
        {
            20: True,
            21: "white",
            22: 500,
            24: "00e302bc0294",
            25: "000b0a02000003e803e800000000",
            26: 0,
        }
    )


@pytest.fixture
def warmth_table():
    """Fixture to provide a small warmth calibration table"""
    return WarmthTable.from_mapping(
        {
            "0": {"hue": 55, "sat": 4},
            "50": {"hue": 38, "sat": 44},
            "100": {"hue": 28, "sat": 84},
        }
    )


@pytest.fixture
def sample_scene():
    """Fixture to provide a three-colour gradual scene"""
    return Scene(
        scene_number=1,
        segments=[
            SceneSegment(
                switch_interval=11,
                change_duration=10,
                change_mode=ChangeMode.GRADUAL,
                h=h,
                s=100,
                v=100,
            )
            for h in (0, 118, 231)
        ],
    )


@pytest.fixture
def hue_state():
    """Fixture to provide a bridge light state in hs mode"""
    return {
        "on": True,
        "bri": 254,
        "hue": 10923,
        "sat": 254,
        "effect": "none",
        "xy": [0.4317, 0.4996],
        "ct": 326,
        "alert": "none",
        "colormode": "hs",
        "reachable": True,
    }


@pytest.fixture
def bridge_lights(hue_state):
    """Fixture to provide the bridge's light listing"""
    return {
        "1": {
            "state": hue_state,
            "type": "Extended color light",
            "name": "Desk lamp",
            "modelid": "LCT015",
        },
        "2": {
            "state": {"on": False, "bri": 1, "alert": "none", "reachable": True},
            "type": "Dimmable light",
            "name": "Hallway",
            "modelid": "LWB010",
        },
    }
