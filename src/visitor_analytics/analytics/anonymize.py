"""Irreversible identifier hashing applied before anything is written."""

import hashlib
import hmac
from typing import Optional

from ..utils.config import PrivacyConfig


def hash_session_id(session_id: str) -> str:
    """SHA-256 of the raw session identifier."""
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


def keyed_hash(value: str, key: str) -> str:
    """HMAC-SHA256 of value under the installation secret."""
    return hmac.new(key.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


class Anonymizer:
    """Applies the configured privacy rules to request identifiers."""

    def __init__(self, privacy: PrivacyConfig):
        self.privacy = privacy

    def session_hash(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id:
            return None
        return hash_session_id(session_id)

    def ip(self, ip: Optional[str]) -> Optional[str]:
        if not ip:
            return None
        if not self.privacy.hash_ip_addresses:
            return ip
        return keyed_hash(ip, self.privacy.hash_key)

    def user_agent(self, user_agent: Optional[str]) -> Optional[str]:
        if not user_agent:
            return None
        if not self.privacy.hash_user_agents:
            return user_agent
        return hashlib.sha256(user_agent.encode("utf-8")).hexdigest()

    def referrer(self, referrer: Optional[str]) -> Optional[str]:
        if not referrer:
            return None
        if not self.privacy.hash_referrers:
            return referrer
        return keyed_hash(referrer, self.privacy.hash_key)
