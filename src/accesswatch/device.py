"""Device fingerprint extraction from user agent strings.

Classifies the client into a device type, operating system and browser.
The classification is a pure function of the input string; whether a
device is unusual for a given user is decided later by the scoring engine.
"""

import re
from typing import Optional, Tuple

from .models.access_event import DeviceInfo

TABLET_PATTERN = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobile))", re.IGNORECASE)

MOBILE_PATTERN = re.compile(
    r"Mobile|iP(hone|od)|Android|BlackBerry|IEMobile|Kindle|NetFront|Silk-Accelerated|"
    r"(hpw|web)OS|Fennec|Minimo|Opera M(obi|ini)|Blazer|Dolfin|Dolphin|Skyfire|Zune"
)

# Evaluated in order; first match wins
OS_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("windows",), "Windows"),
    (("mac os x",), "macOS"),
    (("iphone", "ipad"), "iOS"),
    (("android",), "Android"),
    (("linux",), "Linux"),
)


def _detect_device_type(user_agent: str) -> str:
    if TABLET_PATTERN.search(user_agent):
        return "tablet"
    if MOBILE_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"


def _detect_os(ua: str) -> str:
    for tokens, name in OS_RULES:
        if any(token in ua for token in tokens):
            return name
    return "Unknown"


def _detect_browser(ua: str) -> str:
    # Chrome user agents also carry "Safari", Edge ones also carry "Chrome"
    if "edg/" in ua:
        return "Edge"
    if "chrome" in ua:
        return "Chrome"
    if "firefox" in ua:
        return "Firefox"
    if "safari" in ua and "chrome" not in ua:
        return "Safari"
    if "opera" in ua or "opr/" in ua:
        return "Opera"
    return "Unknown"


def extract_device_info(user_agent: Optional[str]) -> DeviceInfo:
    """Classify a raw user agent string.

    Never raises: malformed or missing input yields a best-effort
    classification (desktop / Unknown / Unknown).

    Args:
        user_agent: Raw User-Agent header value

    Returns:
        DeviceInfo with is_unusual always False
    """
    if not isinstance(user_agent, str):
        user_agent = ""

    ua = user_agent.lower()

    return DeviceInfo(
        device_type=_detect_device_type(user_agent),
        os=_detect_os(ua),
        browser=_detect_browser(ua),
        is_unusual=False,
    )
