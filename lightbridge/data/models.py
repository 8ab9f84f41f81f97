from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_extra_types.color import Color
from typing_extensions import Self

from lightbridge.color.conversions import rgb_to_hsv
from lightbridge.core.utils import clamp, clamp_percentage


class DeviceKind(str, Enum):
    TUYA = "tuya"
    HUE = "hue"


class TuyaMode(str, Enum):
    WHITE = "white"
    COLOR = "colour"
    SCENE = "scene"
    MUSIC = "music"


class HueMode(str, Enum):
    HS = "hs"
    XY = "xy"
    CT = "ct"


class ChangeMode(IntEnum):
    STATIC = 0
    JUMP = 1
    GRADUAL = 2


class HSVColor(BaseModel):
    """
    Canonical cross-vendor colour.

    Hue in degrees, saturation and value as percentages. Every device codec
    converts to and from this on each read and write.
    """

    h: int = Field(ge=0, le=360)
    s: int = Field(ge=0, le=100)
    v: int = Field(ge=0, le=100)

    @classmethod
    def clamped(cls, h: float, s: float, v: float) -> Self:
        """Build a colour from arbitrary numbers, clamping instead of rejecting."""
        return cls(
            h=int(round(clamp(h, 0, 360))),
            s=clamp_percentage(s),
            v=clamp_percentage(v),
        )

    @classmethod
    def from_color(cls, color: Color) -> Self:
        """Build a colour from anything pydantic's Color accepts ("red", "#ff8800", ...)."""
        r, g, b = color.as_rgb_tuple(alpha=False)
        return cls.clamped(*rgb_to_hsv(r, g, b))

    def as_tuple(self) -> Tuple[int, int, int]:
        return self.h, self.s, self.v


SEGMENT_FIELD_MAX = {
    "switch_interval": 100,
    "change_duration": 100,
    "h": 360,
    "s": 100,
    "v": 100,
    "white_brightness": 1000,
    "color_temperature": 1000,
}


class SceneSegment(BaseModel):
    """
    One colour/timing step of a scene.

    Hue, saturation and value use the canonical ranges; white brightness and
    colour temperature stay in raw device units (0..1000).
    """

    switch_interval: int = Field(ge=0, le=100)
    change_duration: int = Field(ge=0, le=100)
    change_mode: ChangeMode = ChangeMode.STATIC
    h: int = Field(ge=0, le=360)
    s: int = Field(ge=0, le=100)
    v: int = Field(ge=0, le=100)
    white_brightness: int = Field(default=0, ge=0, le=1000)
    color_temperature: int = Field(default=0, ge=0, le=1000)

    @field_validator(
        "switch_interval",
        "change_duration",
        "h",
        "s",
        "v",
        "white_brightness",
        "color_temperature",
        mode="before",
    )
    @classmethod
    def clamp_to_range(cls, value: Any, info: ValidationInfo) -> Any:
        """Clamp numbers into the field's range; anything else is left for validation."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return value
        return int(round(clamp(value, 0, SEGMENT_FIELD_MAX[info.field_name])))


class Scene(BaseModel):
    """An ordered loop of segments plus the scene number tag read from the device."""

    scene_number: int = 0
    segments: List[SceneSegment] = Field(min_length=1)


class TuyaDeviceRecord(BaseModel):
    """
    Identity announced by a local-protocol bulb over UDP broadcast.

    Field aliases follow the decrypted announcement JSON.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="gwId")
    address: str = Field(alias="ip")
    version: str = "3.3"
    ability: int = 0
    encrypt: bool = False
    active: int = 0
    product_key: Optional[str] = Field(default=None, alias="productKey")
    name: Optional[str] = None

    @property
    def kind(self) -> DeviceKind:
        return DeviceKind.TUYA


class HueDeviceRecord(BaseModel):
    """Identity of a light enumerated through the bridge."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    model: str = Field(default="", alias="modelid")
    state: Dict[str, Any] = {}

    @property
    def kind(self) -> DeviceKind:
        return DeviceKind.HUE


class DeviceCredentials(BaseModel):
    """Shared secret and protocol version for one local-protocol bulb."""

    key: str
    name: Optional[str] = None
    version: float = 3.3


class AlertState(str, Enum):
    NONE = "none"
    SELECT = "select"
    LSELECT = "lselect"


class EffectState(str, Enum):
    NONE = "none"
    COLORLOOP = "colorloop"


class HueLightState(BaseModel):
    """
    State object returned by the bridge for one light.

    Colour fields are absent on white-only lights, so everything but `on`
    is optional.
    """

    on: bool = False
    bri: Optional[int] = None  # 0 - 254, 0 is not off
    hue: Optional[int] = None  # 0 - 65535
    sat: Optional[int] = None  # 0 - 254
    effect: Optional[EffectState] = None
    xy: Optional[Tuple[float, float]] = None
    ct: Optional[int] = None  # 153 (cold) - 500 (warm)
    alert: Optional[AlertState] = None
    colormode: Optional[HueMode] = None
    transitiontime: Optional[int] = None  # centiseconds
    reachable: Optional[bool] = None


class HueStatePayload(BaseModel):
    """Partial state written with a single PUT."""

    on: Optional[bool] = None
    bri: Optional[int] = Field(default=None, ge=0, le=254)
    hue: Optional[int] = Field(default=None, ge=0, le=65535)
    sat: Optional[int] = Field(default=None, ge=0, le=254)
    effect: Optional[EffectState] = None
    xy: Optional[Tuple[float, float]] = None
    ct: Optional[int] = Field(default=None, ge=153, le=500)
    alert: Optional[AlertState] = None
    transitiontime: Optional[int] = Field(default=None, ge=0)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
