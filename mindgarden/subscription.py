"""
Subscription Gate — answers "may this user use feature X".

Subscription records live on the user's document in the `users`
collection. An expired subscription reads as free with no features,
whatever level is stored. Purchase and cancel are stubs that write the
record directly; no payment is processed here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from mindgarden.errors import InvalidArgument, MindGardenError
from mindgarden.identity import IdentityProvider
from mindgarden.storage.backends import SERVER_TIMESTAMP, DocumentStore
from mindgarden.storage.models import USERS

logger = logging.getLogger(__name__)


class SubscriptionLevel(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    PREMIUM_PLUS = "premium_plus"


class Feature(str, Enum):
    AI_THERAPY = "ai_therapy"
    ADVANCED_ASSESSMENT = "advanced_assessment"
    CRISIS_PROTOCOL = "crisis_protocol"
    UNLIMITED_CHATS = "unlimited_chats"
    AI_THERAPY_PLUS = "ai_therapy_plus"


LEVEL_FEATURES: dict[SubscriptionLevel, frozenset[Feature]] = {
    SubscriptionLevel.FREE: frozenset(),
    SubscriptionLevel.PREMIUM: frozenset({
        Feature.AI_THERAPY,
        Feature.ADVANCED_ASSESSMENT,
    }),
    SubscriptionLevel.PREMIUM_PLUS: frozenset({
        Feature.AI_THERAPY,
        Feature.ADVANCED_ASSESSMENT,
        Feature.CRISIS_PROTOCOL,
        Feature.UNLIMITED_CHATS,
    }),
}

LEVEL_NAMES = {
    SubscriptionLevel.FREE: "Free Plan",
    SubscriptionLevel.PREMIUM: "Premium Plan",
    SubscriptionLevel.PREMIUM_PLUS: "Premium+ Plan",
}


@dataclass(frozen=True)
class SubscriptionState:
    level: SubscriptionLevel = SubscriptionLevel.FREE
    expires_at: datetime | None = None
    features: frozenset[Feature] = field(default_factory=frozenset)

    @property
    def premium(self) -> bool:
        return self.level in (SubscriptionLevel.PREMIUM, SubscriptionLevel.PREMIUM_PLUS)

    def allows(self, feature: Feature) -> bool:
        if self.level is SubscriptionLevel.PREMIUM_PLUS:
            return True
        return feature in self.features

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "features": sorted(f.value for f in self.features),
        }


FREE = SubscriptionState()


def _parse_features(raw) -> frozenset[Feature]:
    features = set()
    for tag in raw or ():
        try:
            features.add(Feature(tag))
        except ValueError:
            logger.warning("Ignoring unknown feature tag %r", tag)
    return frozenset(features)


def _parse_instant(raw) -> datetime | None:
    if not raw:
        return None
    dt = datetime.fromisoformat(raw)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp the day for shorter months (Jan 31 + 1 month -> Feb 28/29)
    for day in (dt.day, 30, 29, 28):
        try:
            return dt.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    raise ValueError(f"cannot add {months} months to {dt}")


class SubscriptionGate:
    """Capability checks against the current user's subscription."""

    def __init__(
        self,
        documents: DocumentStore,
        identity: IdentityProvider,
        clock: Callable[[], datetime] | None = None,
    ):
        self.documents = documents
        self.identity = identity
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def check_subscription_level(self) -> SubscriptionState:
        """
        Effective subscription of the current user.

        Missing, malformed, expired or unreadable subscriptions all read as
        free. Unauthenticated callers still raise.
        """
        uid = self.identity.require_user()
        try:
            doc = self.documents.get(USERS, uid)
        except MindGardenError as e:
            logger.error("Error checking subscription for %s: %s", uid, e)
            return FREE

        sub = (doc or {}).get("subscription")
        if not sub:
            return FREE

        try:
            level = SubscriptionLevel(sub.get("level", SubscriptionLevel.FREE.value))
            expires_at = _parse_instant(sub.get("expires_at"))
        except (ValueError, TypeError) as e:
            logger.warning("Malformed subscription for %s: %s", uid, e)
            return FREE

        if expires_at and self.clock() > expires_at:
            return FREE

        return SubscriptionState(
            level=level,
            expires_at=expires_at,
            features=_parse_features(sub.get("features")),
        )

    def has_feature_access(self, feature: Feature) -> bool:
        return self.check_subscription_level().allows(feature)

    def is_premium(self) -> bool:
        return self.check_subscription_level().premium

    def purchase(self, level: SubscriptionLevel, months: int = 1) -> SubscriptionState:
        """Grant `level` for `months` months. Stub: no payment is taken."""
        if months < 1:
            raise InvalidArgument("Subscription duration must be at least one month")
        uid = self.identity.require_user()
        expires_at = _add_months(self.clock(), months)
        features = LEVEL_FEATURES[level]
        subscription = {
            "level": level.value,
            "purchased_at": self.clock().isoformat(),
            "expires_at": expires_at.isoformat(),
            "features": sorted(f.value for f in features),
            "active": True,
        }

        doc = self.documents.get(USERS, uid)
        if doc is not None:
            self.documents.update(USERS, uid, {"subscription": subscription})
        else:
            self.documents.set(USERS, uid, {
                "uid": uid,
                "created_at": SERVER_TIMESTAMP,
                "subscription": subscription,
            })
        logger.info("Subscription %s granted to %s until %s", level.value, uid, expires_at.date())
        return SubscriptionState(level=level, expires_at=expires_at, features=features)

    def cancel(self) -> None:
        """Mark the subscription inactive. Access continues until it expires."""
        uid = self.identity.require_user()
        doc = self.documents.get(USERS, uid)
        sub = (doc or {}).get("subscription")
        if not sub:
            raise InvalidArgument("No subscription to cancel")
        sub = {**sub, "active": False, "canceled_at": self.clock().isoformat()}
        self.documents.update(USERS, uid, {"subscription": sub})
        logger.info("Subscription canceled for %s", uid)

    def details(self) -> dict:
        """Display summary of the effective subscription."""
        state = self.check_subscription_level()
        if state.expires_at:
            expiration = f"Expires on {state.expires_at.date().isoformat()}"
        else:
            expiration = "No active subscription"
        return {
            "name": LEVEL_NAMES[state.level],
            "level": state.level.value,
            "expiration_text": expiration,
            "is_active": state.level is not SubscriptionLevel.FREE,
            "features": sorted(f.value for f in state.features),
        }
