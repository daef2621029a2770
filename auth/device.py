"""Best-effort device metadata from request headers.

Substring matching on the User-Agent. Order matters: several browsers
embed the names of others (Edge and Opera both contain "Chrome").
"""

from auth.types import DeviceInfo

# (needle, label), first match wins
_BROWSERS = [
    ("edg/", "Edge"),
    ("opr/", "Opera"),
    ("opera", "Opera"),
    ("samsungbrowser", "Samsung Internet"),
    ("firefox", "Firefox"),
    ("fxios", "Firefox"),
    ("crios", "Chrome"),
    ("chrome", "Chrome"),
    ("safari", "Safari"),
]

_OPERATING_SYSTEMS = [
    ("windows", "Windows"),
    ("iphone", "iOS"),
    ("ipad", "iOS"),
    ("android", "Android"),
    ("mac os x", "macOS"),
    ("macintosh", "macOS"),
    ("cros ", "ChromeOS"),
    ("linux", "Linux"),
]

_TABLET_HINTS = ("ipad", "tablet")
_MOBILE_HINTS = ("mobile", "iphone", "android")


def _first_match(ua: str, table: list[tuple[str, str]]) -> str:
    for needle, label in table:
        if needle in ua:
            return label
    return "Unknown"


def parse_device(user_agent: str | None, ip_address: str | None = None) -> DeviceInfo:
    """Classify a User-Agent string. Never raises; unknown parts become 'Unknown'."""
    if not user_agent:
        return DeviceInfo(ip_address=ip_address)

    ua = user_agent.lower()

    if any(hint in ua for hint in _TABLET_HINTS):
        device_type = "tablet"
    elif any(hint in ua for hint in _MOBILE_HINTS):
        device_type = "mobile"
    else:
        device_type = "desktop"

    return DeviceInfo(
        device_type=device_type,
        browser=_first_match(ua, _BROWSERS),
        os=_first_match(ua, _OPERATING_SYSTEMS),
        ip_address=ip_address,
        # Truncated; some clients send multi-kilobyte agents
        user_agent=user_agent[:512],
    )
