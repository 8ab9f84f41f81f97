import json
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Self


class WarmthPoint(BaseModel):
    """A calibrated (hue, saturation) pair rendering one warmth percentage."""

    hue: int = Field(ge=0, le=360)
    sat: int = Field(ge=0, le=100)


warmth_adapter = TypeAdapter(Dict[int, WarmthPoint])


class WarmthTable:
    """
    Immutable bidirectional map between warmth percentages and hue/saturation.

    Bridge lights have no native warm-white channel we can drive the same way
    as a local bulb, so warmth is rendered through the colour channel using
    calibration points fixed at deploy time. Lookups never interpolate.
    """

    def __init__(self, points: Mapping[int, WarmthPoint]):
        forward: Dict[int, Tuple[int, int]] = {}
        inverse: Dict[Tuple[int, int], int] = {}
        for percent, point in sorted(points.items()):
            pair = (point.hue, point.sat)
            if pair in inverse:
                raise ValueError(
                    f"Warmth {percent}% and {inverse[pair]}% share hue/sat {pair}"
                )
            forward[percent] = pair
            inverse[pair] = percent
        self._forward = MappingProxyType(forward)
        self._inverse = MappingProxyType(inverse)

    @classmethod
    def from_mapping(cls, data: Mapping) -> Self:
        return cls(warmth_adapter.validate_python(dict(data)))

    @classmethod
    def from_file(cls, path: str) -> Self:
        with open(path, "r") as f:
            table = cls.from_mapping(json.load(f))
        logger.debug(f"Loaded {len(table)} warmth calibration points from {path}")
        return table

    def __len__(self) -> int:
        return len(self._forward)

    def __contains__(self, percent: object) -> bool:
        return percent in self._forward

    @property
    def percentages(self) -> Tuple[int, ...]:
        return tuple(self._forward)

    def hue_sat_for(self, percent: int) -> Optional[Tuple[int, int]]:
        """Calibrated (hue, sat) for a warmth percentage, or None if uncalibrated."""
        return self._forward.get(percent)

    def warmth_for(self, hue: int, sat: int) -> Optional[int]:
        """Warmth percentage currently shown by (hue, sat), or None if not a calibrated point."""
        return self._inverse.get((hue, sat))
