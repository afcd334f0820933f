"""
Platform detection and per-platform policy.
"""

import logging
from enum import Enum
from typing import Dict
from urllib.parse import urlparse

from . import config

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    REDDIT = "reddit"
    VIMEO = "vimeo"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return {
            Platform.YOUTUBE: "YouTube",
            Platform.TIKTOK: "TikTok",
        }.get(self, self.value.capitalize())


# Platforms that can hold a session credential
CREDENTIAL_PLATFORMS = (Platform.INSTAGRAM, Platform.TWITTER, Platform.YOUTUBE)

# Host suffix -> platform
_HOSTS = {
    "youtube.com": Platform.YOUTUBE,
    "youtu.be": Platform.YOUTUBE,
    "instagram.com": Platform.INSTAGRAM,
    "twitter.com": Platform.TWITTER,
    "x.com": Platform.TWITTER,
    "tiktok.com": Platform.TIKTOK,
    "reddit.com": Platform.REDDIT,
    "redd.it": Platform.REDDIT,
    "vimeo.com": Platform.VIMEO,
}

# Cookie jar domain per credential platform
COOKIE_DOMAINS = {
    Platform.INSTAGRAM: ".instagram.com",
    Platform.TWITTER: ".twitter.com",
    Platform.YOUTUBE: ".youtube.com",
}

# Google identity cookies that YouTube also reads from .google.com
GOOGLE_IDENTITY_COOKIES = ("SID", "HSID", "SSID", "APISID", "SAPISID")
GOOGLE_IDENTITY_DOMAIN = ".google.com"


def detect_platform(url: str) -> Platform:
    """Map a URL to a Platform by host name; UNKNOWN when nothing matches."""
    if not url:
        return Platform.UNKNOWN
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        host = (urlparse(candidate).hostname or "").lower()
    except ValueError:
        return Platform.UNKNOWN
    for suffix, platform in _HOSTS.items():
        if host == suffix or host.endswith(f".{suffix}"):
            return platform
    return Platform.UNKNOWN


def parse_platform(name: str) -> Platform:
    """Parse a credential platform name; raises ValueError for anything else."""
    platform = Platform((name or "").strip().lower())
    if platform not in CREDENTIAL_PLATFORMS:
        raise ValueError(f"{name!r} does not accept credentials")
    return platform


class ProbePolicy(str, Enum):
    """Whether the availability probe runs before downloading."""
    PROBE = "probe"
    # Probe only while the platform has no usable credential
    SKIP_WITH_CREDENTIAL = "skip-with-credential"
    # Backends need cookies anyway, an anonymous probe is unreliable
    SKIP = "skip"


DEFAULT_PROBE_POLICY: Dict[Platform, ProbePolicy] = {
    Platform.INSTAGRAM: ProbePolicy.SKIP,
    Platform.TWITTER: ProbePolicy.SKIP,
    Platform.YOUTUBE: ProbePolicy.SKIP_WITH_CREDENTIAL,
}


def build_probe_policy(overrides: str = "") -> Dict[Platform, ProbePolicy]:
    """Default policy table with "platform=policy" comma-separated overrides applied."""
    table = dict(DEFAULT_PROBE_POLICY)
    for item in overrides.split(","):
        if not item.strip():
            continue
        name, _, value = item.partition("=")
        try:
            table[Platform(name.strip().lower())] = ProbePolicy(value.strip().lower())
        except ValueError:
            logger.warning(f"⚠️ Ignoring invalid PROBE_POLICY entry: {item.strip()!r}")
    return table


def probe_policy_for(platform: Platform, table: Dict[Platform, ProbePolicy]) -> ProbePolicy:
    return table.get(platform, ProbePolicy.PROBE)


PROBE_POLICY_TABLE = build_probe_policy(config.PROBE_POLICY)
