"""Credential and model pool with per-pair health tracking."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from litrev.config.constants import UNKNOWN_MODEL_QUOTA
from litrev.config.settings import LLMConfig, ModelQuotaConfig
from litrev.exceptions import FatalConfigError
from litrev.llm.ledger import UsageLedger, mask_key
from litrev.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class Credential:
    """An API key with its display label. The secret never shows up in repr."""

    secret: str = field(repr=False)
    label: str

    @property
    def masked(self) -> str:
        return mask_key(self.secret)

    def __repr__(self) -> str:
        return f"Credential(label={self.label!r}, masked={self.masked!r})"


@dataclass(frozen=True)
class ModelProfile:
    """A model with its cost tier, fallback chain and quota limits."""

    name: str
    tier: int
    rpm: int
    tpm: int
    rpd: int
    fallback_chain: tuple[str, ...] = ()

    @classmethod
    def from_config(
        cls, name: str, quota: ModelQuotaConfig, fallback_chain: tuple[str, ...] = ()
    ) -> "ModelProfile":
        return cls(
            name=name,
            tier=quota.tier,
            rpm=quota.rpm,
            tpm=quota.tpm,
            rpd=quota.rpd,
            fallback_chain=fallback_chain,
        )


# Health variants


@dataclass(frozen=True)
class Healthy:
    kind: Literal["healthy"] = "healthy"


@dataclass(frozen=True)
class RateLimited:
    cooldown_until: float  # time.monotonic() deadline
    kind: Literal["rate_limited"] = "rate_limited"


@dataclass(frozen=True)
class Exhausted:
    day: str  # Usage day the quota ran out on
    kind: Literal["exhausted"] = "exhausted"


@dataclass(frozen=True)
class Disabled:
    reason: str
    kind: Literal["disabled"] = "disabled"


Health = Healthy | RateLimited | Exhausted | Disabled

HEALTHY = Healthy()


@dataclass
class QuotaState:
    """Health and usage bookkeeping for one (credential, model) pair."""

    health: Health = HEALTHY
    remaining_pct: float = 100.0
    last_used: datetime | None = None
    rotation_count: int = 0


@dataclass(frozen=True)
class KeyQuotaReport:
    """Per-credential quota row for progress snapshots."""

    label: str
    status: str
    quota_remaining_pct: float
    quota_details: str
    health_status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "status": self.status,
            "quotaRemainingPct": self.quota_remaining_pct,
            "quotaDetails": self.quota_details,
            "healthStatus": self.health_status,
        }


class CredentialPool:
    """Tracks health and estimated quota for every (credential, model) pair.

    QuotaState objects are created lazily on first access. ``RateLimited``
    reverts to ``Healthy`` once its cooldown passes and ``Exhausted`` reverts
    when the ledger's usage day changes. ``Disabled`` is terminal.
    """

    def __init__(
        self,
        config: LLMConfig,
        ledger: UsageLedger,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the pool.

        Args:
            config: LLM configuration with the model catalogue
            ledger: Usage ledger, source of the daily and per-minute quota signals
            monotonic: Monotonic clock used for rate-limit cooldowns
        """
        self.config = config
        self.ledger = ledger
        self._monotonic = monotonic
        self._credentials: list[Credential] = []
        self._states: dict[tuple[str, str], QuotaState] = {}
        self._pair_locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        chain = config.semantic_filtering_chain
        self._profiles: dict[str, ModelProfile] = {
            name: ModelProfile.from_config(
                name,
                quota,
                tuple(chain[chain.index(name) + 1 :]) if name in chain else (),
            )
            for name, quota in config.models.items()
        }

    # Setup

    def initialize(self, credentials: list[str]) -> None:
        """Load credentials into the pool.

        Args:
            credentials: API key secrets; blanks and duplicates are ignored

        Raises:
            FatalConfigError: If no usable credential was given
        """
        for secret in credentials:
            if secret and secret.strip():
                self.add_credential(secret.strip())

        if not self._credentials:
            raise FatalConfigError("At least one API key is required")

        log.info("Credential pool initialized", keys=len(self._credentials))

    def add_credential(self, secret: str, label: str | None = None) -> Credential:
        """Add a credential at runtime. Adding a known secret returns the existing entry."""
        secret = secret.strip()
        if not secret:
            raise FatalConfigError("API key must not be blank")

        with self._registry_lock:
            for existing in self._credentials:
                if existing.secret == secret:
                    return existing
            credential = Credential(
                secret=secret, label=label or f"Key {len(self._credentials) + 1}"
            )
            self._credentials.append(credential)

        log.info("Credential added", key=credential.masked, label=credential.label)
        return credential

    @property
    def credentials(self) -> list[Credential]:
        with self._registry_lock:
            return list(self._credentials)

    def resolve_model(self, name: str) -> ModelProfile:
        """Get the profile for a model, using conservative limits for unknown names."""
        with self._registry_lock:
            profile = self._profiles.get(name)
            if profile is None:
                log.warning("Unknown model, using default quotas", model=name)
                profile = ModelProfile.from_config(name, ModelQuotaConfig(**UNKNOWN_MODEL_QUOTA))
                self._profiles[name] = profile
            return profile

    # State access

    def _pair_lock(self, pair: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._pair_locks.get(pair)
            if lock is None:
                lock = self._pair_locks[pair] = threading.Lock()
            return lock

    def _refresh(self, credential: Credential, model: str, state: QuotaState) -> None:
        """Apply time-based transitions and recompute the quota estimate.

        Caller holds the pair lock.
        """
        health = state.health
        if isinstance(health, RateLimited) and self._monotonic() >= health.cooldown_until:
            state.health = HEALTHY
            log.debug("Rate limit cooldown over", key=credential.label, model=model)
        elif isinstance(health, Exhausted) and self.ledger.current_day != health.day:
            state.health = HEALTHY
            log.debug("Daily quota reset", key=credential.label, model=model)

        profile = self.resolve_model(model)
        today = self.ledger.get_pair_requests(credential.secret, model)
        minute = self.ledger.get_pair_window_usage(credential.secret, model)
        # The tightest of the three limits decides
        left = min(
            1 - today / profile.rpd,
            1 - minute.requests / profile.rpm,
            1 - minute.tokens / profile.tpm,
        )
        state.remaining_pct = max(0.0, 100.0 * left)

    def get_state(self, credential: Credential, model: str) -> QuotaState:
        """Get the (refreshed) state for a pair, creating it on first access."""
        pair = (credential.secret, model)
        with self._pair_lock(pair):
            state = self._states.get(pair)
            if state is None:
                state = self._states[pair] = QuotaState()
            self._refresh(credential, model, state)
            return state

    def is_healthy(self, credential: Credential, model: str) -> bool:
        return isinstance(self.get_state(credential, model).health, Healthy)

    def get_healthy_pairs(
        self, models: list[str] | None = None, tier: int | None = None
    ) -> list[tuple[Credential, ModelProfile]]:
        """List healthy pairs in credential order.

        Args:
            models: Models to consider; defaults to every configured model
            tier: Only include models of this tier

        Returns:
            List of (credential, model profile) tuples
        """
        names = models if models is not None else list(self._profiles)
        profiles = [self.resolve_model(name) for name in names]
        if tier is not None:
            profiles = [p for p in profiles if p.tier == tier]

        return [
            (credential, profile)
            for profile in profiles
            for credential in self.credentials
            if self.is_healthy(credential, profile.name)
        ]

    # Transitions

    def _set_health(self, credential: Credential, model: str, health: Health) -> None:
        pair = (credential.secret, model)
        with self._pair_lock(pair):
            state = self._states.setdefault(pair, QuotaState())
            if isinstance(state.health, Disabled):
                return
            state.health = health

    def mark_rate_limited(self, credential: Credential, model: str, cooldown: float) -> None:
        """Put a pair on cooldown for ``cooldown`` seconds."""
        self._set_health(credential, model, RateLimited(self._monotonic() + cooldown))
        log.warning("Key rate limited", key=credential.label, model=model, cooldown=cooldown)

    def mark_exhausted(self, credential: Credential, model: str) -> None:
        """Mark a pair out of quota until the usage day changes."""
        self._set_health(credential, model, Exhausted(self.ledger.current_day))
        log.warning("Key quota exhausted", key=credential.label, model=model)

    def mark_disabled(self, credential: Credential, model: str, reason: str) -> None:
        """Disable a pair for the rest of the process lifetime."""
        self._set_health(credential, model, Disabled(reason))
        log.error("Key disabled", key=credential.label, model=model, reason=reason)

    def touch(self, credential: Credential, model: str) -> None:
        """Record that a pair was handed out for a request."""
        pair = (credential.secret, model)
        with self._pair_lock(pair):
            state = self._states.setdefault(pair, QuotaState())
            state.last_used = self.ledger.now()
            state.rotation_count += 1

    def reset_rate_limited(self) -> int:
        """Clear every rate-limit cooldown. Returns the number of pairs reset."""
        count = 0
        for (secret, model), state in list(self._states.items()):
            with self._pair_lock((secret, model)):
                if isinstance(state.health, RateLimited):
                    state.health = HEALTHY
                    count += 1
        if count:
            log.info("Rate limited keys reset", pairs=count)
        return count

    # Reporting

    def healthy_credentials_count(self, models: list[str] | None = None) -> int:
        """Count credentials with at least one healthy model."""
        names = models if models is not None else list(self._profiles)
        return sum(
            1
            for credential in self.credentials
            if any(self.is_healthy(credential, name) for name in names)
        )

    def quota_report(self, models: list[str] | None = None) -> list[KeyQuotaReport]:
        """Summarize each credential's health and best remaining quota."""
        names = models if models is not None else list(self._profiles)
        rows: list[KeyQuotaReport] = []

        for credential in self.credentials:
            states = {name: self.get_state(credential, name) for name in names}
            healthy = {n: s for n, s in states.items() if isinstance(s.health, Healthy)}

            if healthy:
                status = "active"
                remaining = max(s.remaining_pct for s in healthy.values())
            else:
                kinds = {s.health.kind for s in states.values()}
                if kinds == {"disabled"}:
                    status = "invalid"
                elif "rate_limited" in kinds:
                    status = "rate_limited"
                else:
                    status = "quota_exceeded"
                remaining = 0.0

            used = self.ledger.get_key_total_usage(credential.secret)
            rows.append(
                KeyQuotaReport(
                    label=credential.label,
                    status=status,
                    quota_remaining_pct=round(remaining, 1),
                    quota_details=f"{used.requests} requests, {used.tokens} tokens today",
                    health_status="healthy" if healthy else status,
                )
            )
        return rows
