"""Credential/model selection strategies."""

from collections.abc import Collection
from dataclasses import dataclass
from typing import Literal, Protocol

from litrev.exceptions import AllKeysExhaustedError
from litrev.llm.pool import Credential, CredentialPool, ModelProfile, QuotaState
from litrev.utils.logging import get_logger

log = get_logger(__name__)

SelectionMode = Literal["auto", "manual"]

# Pair identity used for exclusion: (credential secret, model name)
PairKey = tuple[str, str]


@dataclass(frozen=True)
class Selection:
    """A credential/model pair handed out for one request."""

    credential: Credential
    model: ModelProfile

    @property
    def key(self) -> PairKey:
        return (self.credential.secret, self.model.name)


class SelectionStrategy(Protocol):
    """Decides which models to try, in order, and whether a pair still qualifies."""

    def candidate_models(self) -> list[str]: ...

    def accepts(self, state: QuotaState) -> bool: ...


class AutoStrategy:
    """Walk a model chain, cheapest first, escalating when quota runs low.

    A pair qualifies while its estimated remaining quota is above
    ``escalation_threshold_pct``.
    """

    def __init__(self, chain: list[str], escalation_threshold_pct: float = 0.0) -> None:
        if not chain:
            raise ValueError("Model chain must not be empty")
        self.chain = list(chain)
        self.escalation_threshold_pct = escalation_threshold_pct

    def candidate_models(self) -> list[str]:
        return list(self.chain)

    def accepts(self, state: QuotaState) -> bool:
        return state.remaining_pct > self.escalation_threshold_pct


class ManualStrategy:
    """Pin one model and only rotate credentials."""

    def __init__(self, model: str) -> None:
        self.model = model

    def candidate_models(self) -> list[str]:
        return [self.model]

    def accepts(self, state: QuotaState) -> bool:  # noqa: ARG002
        return True


class Selector:
    """Picks the next (credential, model) pair for a unit of work."""

    def __init__(
        self,
        pool: CredentialPool,
        auto_strategy: SelectionStrategy,
        enable_key_rotation: bool = True,
    ) -> None:
        """Initialize the selector.

        Args:
            pool: Credential pool to draw from
            auto_strategy: Strategy used in ``auto`` mode
            enable_key_rotation: If False, only the first credential is ever used
        """
        self.pool = pool
        self.auto_strategy = auto_strategy
        self.enable_key_rotation = enable_key_rotation

    def strategy_for(self, mode: SelectionMode, requested_model: str | None) -> SelectionStrategy:
        if mode == "manual":
            if not requested_model:
                raise ValueError("Manual selection requires a model name")
            return ManualStrategy(requested_model)
        return self.auto_strategy

    def models_for(self, mode: SelectionMode, requested_model: str | None = None) -> list[str]:
        """Models the given mode may use, in preference order."""
        return self.strategy_for(mode, requested_model).candidate_models()

    def select(
        self,
        mode: SelectionMode = "auto",
        requested_model: str | None = None,
        exclude: Collection[PairKey] = (),
    ) -> Selection:
        """Select the next pair and mark it as used.

        Within a model the least-recently-used qualifying credential wins;
        ties keep credential order.

        Args:
            mode: ``auto`` walks the model chain, ``manual`` pins ``requested_model``
            requested_model: Model name for manual mode
            exclude: Pairs that must not be picked (e.g. the one that just failed)

        Returns:
            The selected pair

        Raises:
            AllKeysExhaustedError: If no healthy qualifying pair remains
        """
        strategy = self.strategy_for(mode, requested_model)
        credentials = self.pool.credentials
        if not self.enable_key_rotation:
            credentials = credentials[:1]

        for model_name in strategy.candidate_models():
            candidates: list[tuple[Credential, QuotaState]] = []
            for credential in credentials:
                if (credential.secret, model_name) in exclude:
                    continue
                state = self.pool.get_state(credential, model_name)
                if state.health.kind == "healthy" and strategy.accepts(state):
                    candidates.append((credential, state))

            if not candidates:
                log.debug("No qualifying key for model, escalating", model=model_name)
                continue

            credential, _ = min(
                candidates,
                key=lambda c: c[1].last_used.timestamp() if c[1].last_used else float("-inf"),
            )
            self.pool.touch(credential, model_name)
            selection = Selection(credential, self.pool.resolve_model(model_name))
            log.debug("Selected key", key=credential.label, model=model_name)
            return selection

        raise AllKeysExhaustedError(
            f"No healthy API key available for models: {', '.join(strategy.candidate_models())}"
        )
