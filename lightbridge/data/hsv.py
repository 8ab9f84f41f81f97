import string

from lightbridge.core.errors import MalformedPayload
from lightbridge.core.utils import clamp
from lightbridge.data.models import HSVColor

HSV_FIELD_LENGTH = 12
RAW_CHANNEL_MAX = 1000


def _hex_word(value: int) -> str:
    return f"{value:04x}"


def decode_hsv(raw: str) -> HSVColor:
    """Decode the packed HHHHSSSSVVVV datapoint (s and v in 0..1000).

    Raises:
        MalformedPayload: if the field is not 12 hex characters
    """
    if not isinstance(raw, str) or len(raw) != HSV_FIELD_LENGTH:
        raise MalformedPayload(f"HSV field must be {HSV_FIELD_LENGTH} hex characters: {raw!r}")
    if not all(c in string.hexdigits for c in raw):
        raise MalformedPayload(f"HSV field is not hex: {raw!r}")
    h = int(raw[0:4], 16)
    s = int(raw[4:8], 16)
    v = int(raw[8:12], 16)
    return HSVColor.clamped(h, s / 10, v / 10)


def encode_hsv(color: HSVColor) -> str:
    s = int(round(clamp(color.s * 10, 0, RAW_CHANNEL_MAX)))
    v = int(round(clamp(color.v * 10, 0, RAW_CHANNEL_MAX)))
    return _hex_word(color.h) + _hex_word(s) + _hex_word(v)
