"""Per-user, per-action rate limiting for sensitive operations.

Each configured action has a fixed window with a maximum number of attempts
and an optional cooldown that blocks the action for a period after every
recorded attempt. Windows reset lazily when a check or record observes that
the previous window has elapsed; there is no background timer.

check() is a pure read. Callers record() only after the gated action was
actually performed, so failures for unrelated reasons are not charged.
"""

import logging
import math
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from peridot_vault.config import Settings
from peridot_vault.store import InMemoryStore, RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Limit for one action. Durations are in seconds."""

    window_seconds: float
    max_attempts: int
    cooldown_seconds: Optional[float] = None


DEFAULT_LIMITS: dict[str, RateLimitConfig] = {
    # Write operations - more restrictive
    "supply": RateLimitConfig(60, 3, cooldown_seconds=30),
    "borrow": RateLimitConfig(60, 3, cooldown_seconds=30),
    "repay": RateLimitConfig(60, 5, cooldown_seconds=15),
    "redeem": RateLimitConfig(60, 5, cooldown_seconds=15),
    "claim": RateLimitConfig(300, 2, cooldown_seconds=60),
    "approve": RateLimitConfig(180, 3, cooldown_seconds=30),
    # Disclosure - very restrictive
    "export_private_key": RateLimitConfig(300, 2, cooldown_seconds=120),
    "export_mnemonic": RateLimitConfig(300, 2, cooldown_seconds=120),
    "set_passphrase": RateLimitConfig(300, 3, cooldown_seconds=30),
    "verify_passphrase": RateLimitConfig(300, 5),
    # Read commands - lenient
    "position": RateLimitConfig(60, 10),
    "markets": RateLimitConfig(60, 15),
    "balance": RateLimitConfig(60, 10),
}


class DenyReason(str, Enum):
    RATE_LIMITED = "rate_limited"
    COOLDOWN = "cooldown"


@dataclass
class RateLimitEntry:
    """Attempts by one user for one action in the current window."""

    user_id: int
    action: str
    count: int
    window_start: float
    last_attempt: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Allowed decisions carry ``remaining`` (attempts left after this one) and
    ``reset_at``; denied ones carry ``reason`` and ``retry_after`` seconds.
    Unconfigured actions are allowed with neither.
    """

    allowed: bool
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    reason: Optional[DenyReason] = None
    retry_after: Optional[float] = None

    @property
    def message(self) -> str:
        """User-facing description of a denial."""
        if self.allowed:
            return ""
        seconds = math.ceil(self.retry_after or 0)
        if self.reason == DenyReason.COOLDOWN:
            return f"Action blocked. Cooldown active for {seconds} more seconds."
        return f"Rate limit exceeded. Try again in {seconds} seconds."


@dataclass(frozen=True)
class RateLimitStatus:
    has_limit: bool
    current_count: int = 0
    max_attempts: Optional[int] = None
    window_start: Optional[float] = None
    window_end: Optional[float] = None
    last_attempt: Optional[float] = None


@dataclass(frozen=True)
class RateLimiterStats:
    total_entries: int
    active_users: int
    top_actions: list[tuple[str, int]]


class RateLimitedError(Exception):
    """Raised when a gated action is denied by the rate limiter."""

    def __init__(self, user_id: int, action: str, decision: RateLimitDecision):
        self.user_id = user_id
        self.action = action
        self.decision = decision
        super().__init__(decision.message)

    @property
    def reason(self) -> Optional[DenyReason]:
        return self.decision.reason

    @property
    def retry_after(self) -> Optional[float]:
        return self.decision.retry_after


class RateLimiter:
    """Fixed-window plus cooldown throttle keyed by (user, action).

    Usage:
        limiter = RateLimiter()
        decision = limiter.check(user_id, "export_private_key")
        if decision.allowed:
            ...  # perform the action
            limiter.record(user_id, "export_private_key")
    """

    def __init__(
        self,
        limits: Optional[dict[str, RateLimitConfig]] = None,
        store: Optional[RecordStore[tuple[int, str], RateLimitEntry]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the limiter.

        Args:
            limits: Per-action configuration (defaults to DEFAULT_LIMITS)
            store: Entry store (in-memory if omitted)
            clock: Time source in epoch seconds
        """
        self._limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self._entries = store if store is not None else InMemoryStore()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RateLimiter":
        """Build a limiter from defaults merged with configured overrides."""
        limits = dict(DEFAULT_LIMITS)
        for action, rule in settings.rate_limit_overrides.items():
            limits[action] = RateLimitConfig(
                window_seconds=rule.window_seconds,
                max_attempts=rule.max_attempts,
                cooldown_seconds=rule.cooldown_seconds,
            )
        return cls(limits=limits, **kwargs)

    def get_config(self, action: str) -> Optional[RateLimitConfig]:
        return self._limits.get(action)

    def configure(self, action: str, config: RateLimitConfig) -> None:
        """Set or replace the limit for an action."""
        self._limits[action] = config
        logger.info(
            f"Rate limit for '{action}': {config.max_attempts} per {config.window_seconds}s"
            f" (cooldown {config.cooldown_seconds or 0}s)"
        )

    def check(self, user_id: int, action: str) -> RateLimitDecision:
        """Check whether a user may perform an action now. Does not record."""
        config = self._limits.get(action)
        if config is None:
            return RateLimitDecision(allowed=True)

        now = self._clock()
        entry = self._entries.get((user_id, action))

        if entry is None:
            return RateLimitDecision(
                allowed=True,
                remaining=config.max_attempts - 1,
                reset_at=now + config.window_seconds,
            )

        if config.cooldown_seconds and entry.last_attempt + config.cooldown_seconds > now:
            cooldown_until = entry.last_attempt + config.cooldown_seconds
            logger.debug(f"User {user_id} in cooldown for '{action}'")
            return RateLimitDecision(
                allowed=False,
                reason=DenyReason.COOLDOWN,
                retry_after=cooldown_until - now,
            )

        if now - entry.window_start > config.window_seconds:
            return RateLimitDecision(
                allowed=True,
                remaining=config.max_attempts - 1,
                reset_at=now + config.window_seconds,
            )

        reset_at = entry.window_start + config.window_seconds
        if entry.count >= config.max_attempts:
            logger.warning(
                f"Rate limit exceeded for user {user_id} on '{action}' "
                f"({entry.count}/{config.max_attempts})"
            )
            return RateLimitDecision(
                allowed=False,
                reset_at=reset_at,
                reason=DenyReason.RATE_LIMITED,
                retry_after=reset_at - now,
            )

        return RateLimitDecision(
            allowed=True,
            remaining=config.max_attempts - entry.count - 1,
            reset_at=reset_at,
        )

    def record(self, user_id: int, action: str) -> None:
        """Record an attempt. Call after the gated action was performed."""
        config = self._limits.get(action)
        if config is None:
            return

        key = (user_id, action)
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None or now - entry.window_start > config.window_seconds:
            self._entries.set(
                key,
                RateLimitEntry(
                    user_id=user_id,
                    action=action,
                    count=1,
                    window_start=now,
                    last_attempt=now,
                ),
            )
        else:
            entry.count += 1
            entry.last_attempt = now
            self._entries.set(key, entry)

    def status(self, user_id: int, action: str) -> RateLimitStatus:
        """Current counters for a user/action."""
        config = self._limits.get(action)
        if config is None:
            return RateLimitStatus(has_limit=False)

        entry = self._entries.get((user_id, action))
        if entry is None:
            return RateLimitStatus(has_limit=True, max_attempts=config.max_attempts)

        return RateLimitStatus(
            has_limit=True,
            current_count=entry.count,
            max_attempts=config.max_attempts,
            window_start=entry.window_start,
            window_end=entry.window_start + config.window_seconds,
            last_attempt=entry.last_attempt,
        )

    def reset_user(self, user_id: int) -> int:
        """Drop all entries for a user (admin function).

        Returns:
            Number of entries removed
        """
        keys = [key for key, entry in self._entries.items() if entry.user_id == user_id]
        for key in keys:
            self._entries.delete(key)
        return len(keys)

    def active_users(self) -> set[int]:
        """Users with at least one stored entry."""
        return {entry.user_id for entry in self._entries.values()}

    def cleanup(self) -> int:
        """Remove entries whose window and cooldown have both elapsed.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = []

        for key, entry in self._entries.items():
            config = self._limits.get(entry.action)
            if config is None:
                expired.append(key)
                continue

            window_expired = now - entry.window_start > config.window_seconds
            cooldown_expired = (
                not config.cooldown_seconds
                or now - entry.last_attempt > config.cooldown_seconds
            )
            if window_expired and cooldown_expired:
                expired.append(key)

        for key in expired:
            self._entries.delete(key)

        if expired:
            logger.debug(f"Rate limiter cleanup removed {len(expired)} entries")
        return len(expired)

    def stats(self) -> RateLimiterStats:
        action_counts: Counter = Counter()
        for entry in self._entries.values():
            action_counts[entry.action] += entry.count

        return RateLimiterStats(
            total_entries=len(self._entries),
            active_users=len(self.active_users()),
            top_actions=action_counts.most_common(10),
        )
