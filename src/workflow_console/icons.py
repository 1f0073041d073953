from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UnknownIconError(ValueError):
    """Raised when an icon or icon colour name is not in the registry."""


class IconName(str, Enum):
    PLAY = "Play"
    ZAP = "Zap"
    MAIL = "Mail"
    GLOBE = "Globe"
    DATABASE = "Database"
    FILE_TEXT = "FileText"
    CALENDAR = "Calendar"
    USERS = "Users"
    CLOCK = "Clock"
    CHECK_CIRCLE = "CheckCircle"
    ALERT_CIRCLE = "AlertCircle"
    IMAGE = "Image"
    SPLIT = "Split"
    HOURGLASS = "Hourglass"
    SEARCH = "Search"
    USER = "User"
    MESSAGE = "Message"
    TAG = "Tag"
    CHECKLIST = "Checklist"
    VIDEO = "Video"
    EXTERNAL_LINK = "ExternalLink"
    ROBOT = "Robot"
    PLUS = "Plus"
    SETTINGS = "Settings"


@dataclass(slots=True, frozen=True)
class IconSpec:
    name: IconName
    glyph: str
    capabilities: frozenset[str]


@dataclass(slots=True, frozen=True)
class IconColor:
    name: str
    value: str
    background: str
    foreground: str


def _spec(name: IconName, glyph: str, *capabilities: str) -> IconSpec:
    return IconSpec(name=name, glyph=glyph, capabilities=frozenset(capabilities))


ICON_REGISTRY: dict[IconName, IconSpec] = {
    spec.name: spec
    for spec in (
        _spec(IconName.PLAY, "play", "button"),
        _spec(IconName.ZAP, "zap", "activity", "button"),
        _spec(IconName.MAIL, "mail", "activity", "button"),
        _spec(IconName.GLOBE, "globe", "activity", "button"),
        _spec(IconName.DATABASE, "database", "activity", "button"),
        _spec(IconName.FILE_TEXT, "file-text", "activity", "button"),
        _spec(IconName.CALENDAR, "calendar", "activity", "button"),
        _spec(IconName.USERS, "users", "activity", "button"),
        _spec(IconName.CLOCK, "clock", "activity", "button"),
        _spec(IconName.CHECK_CIRCLE, "check-circle", "activity", "button"),
        _spec(IconName.ALERT_CIRCLE, "alert-circle", "activity", "button"),
        _spec(IconName.IMAGE, "image", "activity", "button"),
        _spec(IconName.SPLIT, "split", "activity", "button"),
        _spec(IconName.HOURGLASS, "hourglass", "activity", "button"),
        _spec(IconName.SEARCH, "search", "activity", "button"),
        _spec(IconName.USER, "user", "activity", "button"),
        _spec(IconName.MESSAGE, "message-circle", "activity", "button"),
        _spec(IconName.TAG, "tag", "activity", "button"),
        _spec(IconName.CHECKLIST, "list-checks", "activity", "button"),
        _spec(IconName.VIDEO, "video", "activity", "button"),
        _spec(IconName.EXTERNAL_LINK, "external-link", "activity", "button"),
        _spec(IconName.ROBOT, "bot", "activity", "button"),
        _spec(IconName.PLUS, "plus", "button"),
        _spec(IconName.SETTINGS, "settings", "activity"),
    )
}

ICON_COLORS: dict[str, IconColor] = {
    color.value: color
    for color in (
        IconColor(name="Purple", value="purple", background="#EAE8FB", foreground="#4D3EE0"),
        IconColor(name="Orange", value="orange", background="#FBEDD5", foreground="#DA5C30"),
        IconColor(name="Teal", value="teal", background="#D8F4F2", foreground="#3C6D68"),
    )
}

DEFAULT_ICON_COLOR = "purple"


def parse_icon(raw: str | IconName, capability: str | None = None) -> IconName:
    if isinstance(raw, IconName):
        icon = raw
    else:
        text = str(raw or "").strip()
        # stored names are sometimes lower-camel ("fileText")
        normalized = text[:1].upper() + text[1:]
        try:
            icon = IconName(normalized)
        except ValueError:
            raise UnknownIconError(f"unknown icon: {text!r}") from None
    if capability is not None and capability not in ICON_REGISTRY[icon].capabilities:
        raise UnknownIconError(f"icon {icon.value!r} cannot be used for {capability}")
    return icon


def parse_icon_color(raw: str | None) -> str:
    value = str(raw or DEFAULT_ICON_COLOR).strip().lower()
    if value not in ICON_COLORS:
        raise UnknownIconError(f"unknown icon colour: {raw!r}")
    return value


def registry_payload() -> dict[str, list[dict[str, object]]]:
    return {
        "icons": [
            {"name": spec.name.value, "glyph": spec.glyph, "capabilities": sorted(spec.capabilities)}
            for spec in ICON_REGISTRY.values()
        ],
        "colors": [
            {"name": color.name, "value": color.value, "bg": color.background, "iconColor": color.foreground}
            for color in ICON_COLORS.values()
        ],
    }
