import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

# Add the parent directory to sys.path so we can import the project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import aiohttp
import pytest

from lightbridge.core.errors import CapabilityMismatch, MalformedPayload, TransportFailure
from lightbridge.data.models import AlertState, EffectState, HSVColor, HueLightState, HueMode, HueStatePayload
from lightbridge.lights.hue_manager import (
    HueManager,
    channel_from_percentage,
    ct_from_percentage,
    degrees_from_hue,
    hue_from_degrees,
    percentage_from_channel,
    percentage_from_ct,
)


@pytest.fixture
def manager(warmth_table):
    """Fixture to provide a manager for bridge light 1"""
    return HueManager("1", "https://bridge.local", "token", 1, warmth_table, name="Desk lamp")


def with_state(manager, **state):
    """Patch the manager's bridge reads and writes; returns the write mock"""
    manager.get_device_state = AsyncMock(return_value=HueLightState(**state))
    manager.set_device_state = AsyncMock(return_value=[])
    return manager.set_device_state


def written(set_state) -> dict:
    payload = set_state.await_args.args[0]
    assert isinstance(payload, HueStatePayload)
    return payload.to_wire()


def mock_session(json_body=None, side_effect=None):
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json = AsyncMock(return_value=json_body)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.request = MagicMock(return_value=context, side_effect=side_effect)
    return session


class TestScaling:
    def test_bridge_ranges(self):
        """Test conversions between canonical and bridge units"""
        assert hue_from_degrees(360) == 65535
        assert degrees_from_hue(10923) == 60
        assert channel_from_percentage(100) == 254
        assert percentage_from_channel(127) == 50
        assert ct_from_percentage(0) == 153
        assert ct_from_percentage(100) == 500
        assert percentage_from_ct(500) == 100


class TestReads:
    async def test_brightness(self, manager):
        """Test that bri is reported as a percentage"""
        with_state(manager, on=True, bri=127)
        assert await manager.get_brightness() == 50

    async def test_hs_color(self, manager):
        """Test reading a colour set in hs mode"""
        with_state(manager, on=True, bri=254, hue=10923, sat=254, colormode="hs")
        assert (await manager.get_color()).as_tuple() == (60, 100, 100)

    async def test_xy_color(self, manager):
        """Test reading a colour set in xy mode"""
        with_state(manager, on=True, bri=254, xy=(0.64, 0.33), colormode="xy")
        h, s, v = (await manager.get_color()).as_tuple()
        assert min(h, 360 - h) <= 2
        assert s >= 95
        assert v == 100

    async def test_white_only_light(self, manager):
        """Test that a dimmable light has no colour or mode"""
        with_state(manager, on=True, bri=10)
        with pytest.raises(CapabilityMismatch):
            await manager.get_color()
        with pytest.raises(CapabilityMismatch):
            await manager.get_mode()
        assert await manager.get_warmth() is None

    async def test_white_temperature(self, manager):
        """Test that ct is reported as a percentage of its span"""
        with_state(manager, on=True, ct=153)
        assert await manager.get_white_temperature() == 0

    async def test_get_state(self, manager, hue_state):
        """Test the state snapshot of a colour light"""
        with_state(manager, **hue_state)
        state = await manager.get_state()
        assert state["toggle"] is True
        assert state["mode"] is HueMode.HS
        assert state["color"] == {"h": 60, "s": 100, "v": 100}
        assert state["warmth"] is None


class TestWrites:
    async def test_toggle(self, manager):
        """Test turning the light off"""
        set_state = with_state(manager, on=True)
        await manager.set_toggle(False)
        assert written(set_state) == {"on": False}

    async def test_color(self, manager):
        """Test that a colour is written as hue, sat and bri in one PUT"""
        set_state = with_state(manager, on=True)
        await manager.set_color(HSVColor(h=120, s=100, v=50))
        assert written(set_state) == {"hue": 21845, "sat": 254, "bri": 127}

    async def test_brightness(self, manager):
        """Test that brightness is always written as bri"""
        set_state = with_state(manager, on=True, colormode="ct", ct=300)
        await manager.set_brightness(100)
        assert written(set_state) == {"bri": 254}

    async def test_warmth_round_trip(self, manager):
        """Test that a calibrated warmth is written as hue/sat only and reads back"""
        set_state = with_state(manager, on=True)
        await manager.set_warmth(50)
        body = written(set_state)
        assert body == {"hue": 6918, "sat": 112}

        with_state(manager, on=True, bri=200, hue=body["hue"], sat=body["sat"], colormode="hs")
        assert await manager.get_warmth() == 50

    async def test_uncalibrated_warmth(self, manager):
        """Test that warmth without a calibration point is a capability mismatch"""
        set_state = with_state(manager, on=True)
        with pytest.raises(CapabilityMismatch):
            await manager.set_warmth(25)
        set_state.assert_not_awaited()

    async def test_scenes_not_supported(self, manager, sample_scene):
        """Test that bridge lights refuse scenes"""
        with pytest.raises(CapabilityMismatch):
            await manager.get_scene()
        with pytest.raises(CapabilityMismatch):
            await manager.set_scene(sample_scene)

    async def test_mode_to_ct_keeps_temperature(self, manager):
        """Test that switching to ct re-applies the current temperature"""
        set_state = with_state(manager, on=True, hue=0, sat=254, ct=326, colormode="hs")
        await manager.set_mode("ct")
        assert written(set_state) == {"ct": 326}

    async def test_mode_to_hs_from_xy(self, manager):
        """Test that switching to hs converts the current xy colour"""
        set_state = with_state(manager, on=True, bri=254, xy=(0.64, 0.33), colormode="xy")
        await manager.set_mode("hs")
        body = written(set_state)
        assert set(body) == {"hue", "sat"}
        assert body["sat"] > 240

    async def test_mode_to_xy(self, manager):
        """Test that switching to xy writes the current chromaticity"""
        set_state = with_state(manager, on=True, xy=(0.4317, 0.4996), colormode="hs", hue=0, sat=0)
        await manager.set_mode("xy")
        assert written(set_state) == {"xy": [0.4317, 0.4996]}

    async def test_unknown_mode(self, manager):
        """Test that a local-bulb mode is a capability mismatch on a bridge light"""
        with_state(manager, on=True)
        with pytest.raises(CapabilityMismatch):
            await manager.set_mode("scene")

    async def test_alert_and_transition(self, manager):
        """Test the bridge-only state fields"""
        set_state = with_state(manager, on=True)
        await manager.set_alert(AlertState.LSELECT)
        assert written(set_state) == {"alert": "lselect"}
        await manager.set_transition_time(-5)
        assert written(set_state) == {"transitiontime": 0}


class TestBridgeRequests:
    async def test_put_state(self, warmth_table):
        """Test the PUT sent to the bridge"""
        session = mock_session([{"success": {"/lights/1/state/on": True}}])
        manager = HueManager("1", "https://bridge.local/", "token", 1, warmth_table, session=session)

        await manager.set_toggle(True)

        session.request.assert_called_once_with(
            "PUT", "https://bridge.local/api/token/lights/1/state", json={"on": True}, ssl=False
        )
        session.close.assert_not_called()

    async def test_bridge_rejection(self, warmth_table):
        """Test that error entries in the reply are transport failures"""
        session = mock_session([{"error": {"type": 201, "description": "parameter, bri, is not modifiable"}}])
        manager = HueManager("1", "https://bridge.local", "token", 1, warmth_table, session=session)
        with pytest.raises(TransportFailure, match="not modifiable"):
            await manager.set_brightness(10)

    async def test_get_state_parses(self, warmth_table, bridge_lights):
        """Test reading the light from the bridge"""
        session = mock_session(bridge_lights["1"])
        manager = HueManager("1", "https://bridge.local", "token", 1, warmth_table, session=session)
        state = await manager.get_device_state()
        assert state.colormode is HueMode.HS
        assert session.request.call_args.args == ("GET", "https://bridge.local/api/token/lights/1")

    async def test_get_state_without_state(self, warmth_table):
        """Test that a reply without a state object is malformed"""
        session = mock_session({"name": "Desk lamp"})
        manager = HueManager("1", "https://bridge.local", "token", 1, warmth_table, session=session)
        with pytest.raises(MalformedPayload):
            await manager.get_device_state()

    async def test_unreachable_bridge(self, warmth_table):
        """Test that connection errors are transport failures"""
        session = mock_session(side_effect=aiohttp.ClientConnectionError("refused"))
        manager = HueManager("1", "https://bridge.local", "token", 1, warmth_table, session=session)
        with pytest.raises(TransportFailure):
            await manager.get_toggle()

    async def test_request_timeout(self, warmth_table):
        """Test that a bridge that does not answer in time is a transport failure"""
        session = mock_session(side_effect=asyncio.TimeoutError())
        manager = HueManager("1", "https://bridge.local", "token", 1, warmth_table, session=session)
        with pytest.raises(TransportFailure):
            await manager.get_toggle()

    async def test_owns_session_when_none_given(self, warmth_table):
        """Test that a temporary session is created and closed"""
        session = mock_session([])
        session.close = AsyncMock()
        manager = HueManager("1", "https://bridge.local", "token", 1, warmth_table)
        with patch("lightbridge.lights.hue_manager.aiohttp.ClientSession", return_value=session):
            await manager.set_toggle(False)
        session.close.assert_awaited_once()


class TestBridgeOnlyFields:
    async def test_effect(self, manager):
        """Test starting the colour loop effect"""
        set_state = with_state(manager, on=True)
        await manager.set_effect(EffectState.COLORLOOP)
        assert written(set_state) == {"effect": "colorloop"}

    async def test_set_white_temperature(self, manager):
        """Test that the temperature percentage maps onto the mired span"""
        set_state = with_state(manager, on=True)
        await manager.set_white_temperature(100)
        assert written(set_state) == {"ct": 500}
        await manager.set_white_temperature(-10)
        assert written(set_state) == {"ct": 153}
