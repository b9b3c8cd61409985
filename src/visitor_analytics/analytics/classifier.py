"""
Traffic classification for Visitor Analytics.

Every heuristic here is data: an ordered list of (pattern, label) pairs fed
through one matching function. Inputs are a request and the configuration;
there is no other state.
"""

import ipaddress
from fnmatch import fnmatchcase
from typing import Iterable, Optional, Sequence, Tuple

from ..utils.config import AnalyticsConfig
from ..utils.logging import get_logger
from .models import DeviceInfo, DeviceType, TrackingRequest


logger = get_logger(__name__)


def first_match(
    text: Optional[str],
    rules: Iterable[Tuple[str, str]],
    case_sensitive: bool = True
) -> Optional[str]:
    """
    Return the label of the first rule whose pattern occurs in text.

    Args:
        text: Haystack (None and "" never match)
        rules: Ordered (substring, label) pairs
        case_sensitive: Compare lowercased text and patterns when False

    Returns:
        Matching label or None
    """
    if not text:
        return None

    haystack = text if case_sensitive else text.lower()
    for pattern, label in rules:
        needle = pattern if case_sensitive else pattern.lower()
        if needle and needle in haystack:
            return label
    return None


def contains_any(text: Optional[str], patterns: Sequence[str], case_sensitive: bool = True) -> bool:
    """True if any of patterns occurs in text."""
    return first_match(text, ((p, p) for p in patterns), case_sensitive) is not None


def ip_matches(ip: Optional[str], rule: str) -> bool:
    """
    Match an address against an exact address or a CIDR range.

    Containment is decided by integer masking: (ip & mask) == (subnet & mask).
    Malformed input never matches.
    """
    if not ip or not rule:
        return False

    if "/" not in rule:
        return ip == rule

    subnet, _, bits_text = rule.partition("/")
    try:
        ip_addr = ipaddress.ip_address(ip)
        subnet_addr = ipaddress.ip_address(subnet)
        bits = int(bits_text)
    except ValueError:
        return False

    if ip_addr.version != subnet_addr.version:
        return False

    width = ip_addr.max_prefixlen
    if not 0 <= bits <= width:
        return False

    mask = ((1 << width) - 1) ^ ((1 << (width - bits)) - 1)
    return (int(ip_addr) & mask) == (int(subnet_addr) & mask)


class TrafficClassifier:
    """Exclusion, bot and device decisions for a request."""

    def __init__(self, config: AnalyticsConfig):
        self.config = config

    def is_bot(self, request: TrackingRequest) -> bool:
        """True if bot detection is on and the user agent carries a bot signature."""
        detection = self.config.bot_detection
        if not detection.enabled:
            return False
        return contains_any(request.user_agent, detection.bot_patterns, case_sensitive=False)

    def is_excluded_path(self, path: Optional[str]) -> bool:
        if not path:
            return False
        return any(fnmatchcase(path, pattern) for pattern in self.config.exclusions.excluded_paths)

    def is_excluded_ip(self, ip: Optional[str]) -> bool:
        return any(ip_matches(ip, rule) for rule in self.config.exclusions.excluded_ips)

    def is_excluded_user_agent(self, user_agent: Optional[str]) -> bool:
        return contains_any(
            user_agent,
            self.config.exclusions.excluded_user_agents,
            case_sensitive=False
        )

    def should_exclude(self, request: TrackingRequest) -> bool:
        """True if the request must not be tracked at all."""
        if self.is_excluded_path(request.path):
            logger.debug("request_excluded", reason="path", path=request.path)
            return True

        if self.is_excluded_ip(request.ip):
            logger.debug("request_excluded", reason="ip", path=request.path)
            return True

        if self.is_excluded_user_agent(request.user_agent):
            logger.debug("request_excluded", reason="user_agent", path=request.path)
            return True

        if not self.config.bot_detection.track_bots and self.is_bot(request):
            logger.debug("request_excluded", reason="bot", path=request.path)
            return True

        return False

    def device_type(self, user_agent: Optional[str]) -> DeviceType:
        """Tablet signatures win over mobile ones; anything else is desktop."""
        detection = self.config.device_detection
        if not detection.enabled:
            return DeviceType.DESKTOP

        rules = [(p, DeviceType.TABLET) for p in detection.tablet_patterns]
        rules += [(p, DeviceType.MOBILE) for p in detection.mobile_patterns]
        return first_match(user_agent, rules) or DeviceType.DESKTOP

    def browser_family(self, user_agent: Optional[str]) -> Optional[str]:
        detection = self.config.device_detection
        if not (detection.enabled and detection.detect_browser):
            return None
        return first_match(user_agent, detection.browser_patterns)

    def os_family(self, user_agent: Optional[str]) -> Optional[str]:
        detection = self.config.device_detection
        if not (detection.enabled and detection.detect_os):
            return None
        return first_match(user_agent, detection.os_patterns)

    def classify_device(self, request: TrackingRequest) -> DeviceInfo:
        """Full client classification. country_code stays None (no geolocation)."""
        user_agent = request.user_agent
        return DeviceInfo(
            device_type=self.device_type(user_agent),
            browser_family=self.browser_family(user_agent),
            os_family=self.os_family(user_agent),
            is_bot=self.is_bot(request),
            country_code=None,
        )
