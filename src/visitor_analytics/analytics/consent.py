"""Consent gate: decides per request whether any tracking write may happen."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from ..utils.config import AnalyticsConfig
from ..utils.logging import get_logger
from .models import ConsentCookie, TrackingRequest


logger = get_logger(__name__)

GRANTED = "granted"
DENIED = "denied"


class ConsentGate:
    """Reads and writes the client-held consent decision."""

    algorithm = "HS256"

    def __init__(self, config: AnalyticsConfig, clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.privacy = config.privacy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def is_tracking_enabled(self, request: TrackingRequest) -> bool:
        """Global switch first, then the consent decision when consent is required."""
        if not self.config.enabled:
            return False

        if self.privacy.require_consent:
            return self.has_consent(request)

        return True

    def has_consent(self, request: TrackingRequest) -> bool:
        """
        Interpret the stored decision.

        No decision (or an expired one) falls back to the configured default.
        Anything other than a valid "granted" decision is a refusal.
        """
        token = request.cookies.get(self.privacy.consent_cookie_name)
        if token is None:
            return self.privacy.default_consent

        if not self.privacy.sign_consent_token:
            return token == GRANTED

        try:
            payload = jwt.decode(
                token,
                self.privacy.consent_secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["consent", "exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("consent_token_invalid", error=str(e))
            return False

        expires = payload["exp"]
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            logger.debug("consent_token_invalid", error="exp is not a number")
            return False

        if expires <= self._clock().timestamp():
            logger.debug("consent_token_expired")
            return self.privacy.default_consent

        return payload["consent"] == GRANTED

    def set_consent(self, granted: bool, request: TrackingRequest) -> ConsentCookie:
        """
        Record a decision on the request and return the cookie to send back.

        Args:
            granted: The visitor's decision
            request: Request whose cookie jar is updated

        Returns:
            Cookie name, value and lifetime for the host framework to emit
        """
        decision = GRANTED if granted else DENIED
        now = self._clock()
        lifetime = timedelta(days=self.privacy.consent_cookie_lifetime_days)
        expires_at = now + lifetime

        if self.privacy.sign_consent_token:
            value = jwt.encode(
                {
                    "consent": decision,
                    "iat": int(now.timestamp()),
                    "exp": int(expires_at.timestamp()),
                },
                self.privacy.consent_secret,
                algorithm=self.algorithm,
            )
        else:
            value = decision

        request.cookies[self.privacy.consent_cookie_name] = value
        logger.info("consent_recorded", consent=decision)

        return ConsentCookie(
            name=self.privacy.consent_cookie_name,
            value=value,
            max_age=int(lifetime.total_seconds()),
            expires_at=expires_at,
            granted=granted,
        )
