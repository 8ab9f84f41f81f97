"""
Colour space conversions shared by every device codec.

All maths is done on normalized 0..1 channels and rounded only when values
leave this module.
"""

from typing import Tuple

from colormath import color_conversions, color_objects


def scale(value: float, from_max: float, to_max: float) -> float:
    """Linearly rescale a value from 0..from_max into 0..to_max (no rounding)."""
    return value * to_max / from_max


def _rgb_prime(c: float, x: float, h: float) -> Tuple[float, float, float]:
    if 0 <= h < 60:
        return c, x, 0.0
    elif 60 <= h < 120:
        return x, c, 0.0
    elif 120 <= h < 180:
        return 0.0, c, x
    elif 180 <= h < 240:
        return 0.0, x, c
    elif 240 <= h < 300:
        return x, 0.0, c
    return c, 0.0, x


def hsv_to_rgb(h: float, s: float, v: float) -> Tuple[int, int, int]:
    """Convert h 0..360, s/v 0..100 to 8-bit r, g, b."""
    h = h % 360
    s /= 100
    v /= 100

    c = v * s
    x = c * (1 - abs((h / 60) % 2 - 1))
    m = v - c
    rp, gp, bp = _rgb_prime(c, x, h)
    return (
        int(round((rp + m) * 255)),
        int(round((gp + m) * 255)),
        int(round((bp + m) * 255)),
    )


def _hue(r: float, g: float, b: float, c_max: float, delta: float) -> float:
    if delta == 0:
        return 0.0
    elif c_max == r:
        return 60 * (((g - b) / delta) % 6)
    elif c_max == g:
        return 60 * (((b - r) / delta) + 2)
    return 60 * (((r - g) / delta) + 4)


def rgb_to_hsv(r: float, g: float, b: float) -> Tuple[int, int, int]:
    """Convert 8-bit r, g, b to h 0..360, s/v 0..100."""
    r /= 255
    g /= 255
    b /= 255

    c_max = max(r, g, b)
    c_min = min(r, g, b)
    delta = c_max - c_min

    h = _hue(r, g, b, c_max, delta)
    s = 0.0 if c_max == 0 else delta / c_max
    return int(round(h)) % 360, int(round(s * 100)), int(round(c_max * 100))


def hsv_to_xy(h: float, s: float, v: float) -> Tuple[float, float]:
    """CIE 1931 chromaticity of an HSV colour, as used by the bridge's xy mode."""
    r, g, b = hsv_to_rgb(h, s, v)
    xyy = color_conversions.convert_color(
        color_objects.sRGBColor(r, g, b, is_upscaled=True),
        color_objects.xyYColor,
    )
    return round(xyy.xyy_x, 4), round(xyy.xyy_y, 4)


def xy_to_hsv(x: float, y: float, v: float = 100) -> Tuple[int, int, int]:
    """HSV for an xy chromaticity; the bridge reports brightness separately as v."""
    if y == 0:
        return 0, 0, int(round(v))
    rgb = color_conversions.convert_color(
        color_objects.xyYColor(x, y, 1.0, illuminant="d65"),
        color_objects.sRGBColor,
    )
    # Full luminance usually falls outside the sRGB gamut; normalize to the brightest channel
    channels = tuple(max(c, 0.0) for c in rgb.get_value_tuple())
    peak = max(channels) or 1.0
    h, s, _ = rgb_to_hsv(*(channel / peak * 255 for channel in channels))
    return h, s, int(round(v))
