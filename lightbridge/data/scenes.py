"""
Codec for the multi-segment scene datapoint.

A payload is a one-byte scene number followed by any number of 13-byte
segments, all hex encoded:

    NN | II DD MM HHHH SSSS VVVV WWWW TTTT | II DD MM ...

    NN    scene number
    II    switch interval (0-100)
    DD    change duration (0-100)
    MM    change mode (0 static, 1 jump, 2 gradual)
    HHHH  hue (0-360)
    SSSS  saturation (0-1000)
    VVVV  value (0-1000)
    WWWW  white brightness (0-1000)
    TTTT  colour temperature (0-1000)

There is no segment count; the number of segments follows from the length.
"""

import string
from typing import List

from pydantic import ValidationError

from lightbridge.core.errors import MalformedPayload
from lightbridge.core.utils import clamp
from lightbridge.data.models import Scene, SceneSegment

SCENE_NUMBER_LENGTH = 2
SEGMENT_LENGTH = 26
# Firmware ignores the scene number on write
WRITTEN_SCENE_NUMBER = 0
RAW_CHANNEL_MAX = 1000


def _chunks(body: str) -> List[str]:
    return [body[i : i + SEGMENT_LENGTH] for i in range(0, len(body), SEGMENT_LENGTH)]


def decode_segment(chunk: str) -> SceneSegment:
    """Parse one 26-character segment."""
    if len(chunk) != SEGMENT_LENGTH:
        raise MalformedPayload(f"Scene segment must be {SEGMENT_LENGTH} characters: {chunk!r}")
    try:
        return SceneSegment(
            switch_interval=int(chunk[0:2], 16),
            change_duration=int(chunk[2:4], 16),
            change_mode=int(chunk[4:6], 16),
            h=int(chunk[6:10], 16),
            s=int(chunk[10:14], 16) // 10,
            v=int(chunk[14:18], 16) // 10,
            white_brightness=int(chunk[18:22], 16),
            color_temperature=int(chunk[22:26], 16),
        )
    except (ValueError, ValidationError) as e:
        raise MalformedPayload(f"Invalid scene segment {chunk!r}: {e}") from e


def decode(raw: str) -> Scene:
    """Decode a raw scene datapoint.

    Raises:
        MalformedPayload: if the payload is empty, carries no segment, or its
            body is not a whole number of segments
    """
    if not isinstance(raw, str) or len(raw) <= SCENE_NUMBER_LENGTH:
        raise MalformedPayload(f"Scene payload has no segments: {raw!r}")

    if not all(c in string.hexdigits for c in raw):
        raise MalformedPayload(f"Scene payload is not hex: {raw!r}")

    body = raw[SCENE_NUMBER_LENGTH:]
    if len(body) % SEGMENT_LENGTH:
        raise MalformedPayload(
            f"Scene payload body of {len(body)} characters is not a multiple of {SEGMENT_LENGTH}"
        )

    try:
        scene_number = int(raw[:SCENE_NUMBER_LENGTH], 16)
    except ValueError as e:
        raise MalformedPayload(f"Invalid scene number in {raw!r}") from e

    return Scene(
        scene_number=scene_number,
        segments=[decode_segment(chunk) for chunk in _chunks(body)],
    )


def encode_segment(segment: SceneSegment) -> str:
    s = int(clamp(segment.s * 10, 0, RAW_CHANNEL_MAX))
    v = int(clamp(segment.v * 10, 0, RAW_CHANNEL_MAX))
    return (
        f"{segment.switch_interval:02x}"
        f"{segment.change_duration:02x}"
        f"{int(segment.change_mode):02x}"
        f"{segment.h:04x}"
        f"{s:04x}"
        f"{v:04x}"
        f"{segment.white_brightness:04x}"
        f"{segment.color_temperature:04x}"
    )


def encode(scene: Scene) -> str:
    """Encode a scene for writing; the scene number is always written as 00."""
    return f"{WRITTEN_SCENE_NUMBER:02x}" + "".join(
        encode_segment(segment) for segment in scene.segments
    )
