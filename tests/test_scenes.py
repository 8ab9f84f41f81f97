import sys
from pathlib import Path

# Add the parent directory to sys.path so we can import the project modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from pydantic import ValidationError

from lightbridge.core.errors import MalformedPayload
from lightbridge.data import scenes
from lightbridge.data.models import ChangeMode, Scene, SceneSegment


def segment(**overrides):
    fields = dict(switch_interval=11, change_duration=10, change_mode=ChangeMode.GRADUAL, h=0, s=100, v=100)
    fields.update(overrides)
    return SceneSegment(**fields)


class TestEncode:
    def test_single_segment(self):
        """Test the byte layout of a one-segment gradual red scene"""
        scene = Scene(scene_number=7, segments=[segment()])
        assert scenes.encode(scene) == "000b0a02000003e803e800000000"

    def test_scene_number_is_always_zero(self, sample_scene):
        """Test that the scene number read from the device is not written back"""
        assert sample_scene.scene_number == 1
        assert scenes.encode(sample_scene).startswith("00")

    def test_length_follows_segment_count(self, sample_scene):
        """Test that the payload is two characters plus 26 per segment"""
        assert len(scenes.encode(sample_scene)) == 2 + 26 * 3

    def test_oversaturated_segment_encodes_at_device_max(self):
        """Test that saturation past 100% is written as the raw maximum 1000"""
        raw = scenes.encode(Scene(segments=[segment(s=150, v=100)]))
        assert raw == "000b0a02000003e803e800000000"
        assert raw[2 + 10 : 2 + 14] == "03e8"

    def test_white_fields_are_hex(self):
        """Test that white brightness and colour temperature are hex words"""
        raw = scenes.encode(Scene(segments=[segment(white_brightness=1000, color_temperature=255)]))
        assert raw.endswith("03e800ff")


class TestDecode:
    def test_decode_single_segment(self):
        """Test decoding a known payload into canonical units"""
        scene = scenes.decode("010b0a02000003e803e800000000")
        assert scene.scene_number == 1
        assert scene.segments == [segment()]

    def test_decode_truncates_tenths(self):
        """Test that raw saturation and value are floored to whole percent"""
        scene = scenes.decode("00" + "000001" + "0078" + "0387" + "01f5" + "0000" + "0000")
        seg = scene.segments[0]
        assert (seg.h, seg.s, seg.v) == (120, 90, 50)
        assert seg.change_mode is ChangeMode.JUMP

    @pytest.mark.parametrize("count", [1, 2, 5, 8])
    def test_round_trip(self, count):
        """Test that decode(encode(scene)) gives back the segments"""
        scene = Scene(
            segments=[
                segment(
                    switch_interval=i * 10,
                    change_duration=100 - i * 10,
                    change_mode=ChangeMode(i % 3),
                    h=i * 45,
                    s=100 - i,
                    v=50 + i,
                    white_brightness=i * 100,
                    color_temperature=1000 - i * 100,
                )
                for i in range(count)
            ]
        )
        decoded = scenes.decode(scenes.encode(scene))
        assert decoded.segments == scene.segments
        assert decoded.scene_number == 0

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "00",
            "0a",
            "000b0a02000003e803e80000000",
            "000b0a02000003e803e800000000ff",
            "zz0b0a02000003e803e800000000",
            "000b0a02000003e8 3e800000000",
            None,
        ],
    )
    def test_malformed_payloads(self, raw):
        """Test that short, ragged or non-hex payloads are rejected"""
        with pytest.raises(MalformedPayload):
            scenes.decode(raw)

    def test_out_of_range_segment_is_malformed(self):
        """Test that an unknown change mode is reported as malformed, not as a crash"""
        with pytest.raises(MalformedPayload):
            scenes.decode("000b0a09000003e803e800000000")


class TestSceneModel:
    def test_scene_requires_a_segment(self):
        """Test that an empty scene cannot be built"""
        with pytest.raises(ValidationError):
            Scene(segments=[])

    def test_segment_ranges_are_clamped(self):
        """Test that out-of-range numbers are clamped into each field's range"""
        seg = segment(h=361, s=150, v=-4, switch_interval=101, white_brightness=1001, color_temperature=2.6)
        assert (seg.h, seg.s, seg.v) == (360, 100, 0)
        assert seg.switch_interval == 100
        assert seg.white_brightness == 1000
        assert seg.color_temperature == 3

    def test_non_numeric_fields_are_rejected(self):
        """Test that clamping does not hide values of the wrong type"""
        with pytest.raises(ValidationError):
            segment(h="red")
        with pytest.raises(ValidationError):
            segment(s=None)
