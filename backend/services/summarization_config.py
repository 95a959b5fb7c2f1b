"""
Per-organization summarization configuration derived from subscription plans.

- config_from_plan_features maps a raw plan ``features`` payload to a typed
  SummarizationConfig (the only place plan keys are interpreted)
- SummarizationConfigResolver looks up the organization's active plan and
  falls back to DEFAULT_SUMMARIZATION_CONFIG on any miss or error

Configs are recomputed on every call; organizations can change plans between
runs, so nothing here is cached.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from services.memory_types import SubscriptionStore

logger = logging.getLogger(__name__)


ACTIVE_SUBSCRIPTION_STATUSES: frozenset[str] = frozenset({"active", "trialing"})


@dataclass(frozen=True)
class FeatureFlags:
    enable_memory_summarization: bool = True


@dataclass(frozen=True)
class SummarizationConfig:
    max_memories_per_summary: int = 10
    min_memories_for_summary: int = 3
    similarity_threshold: float = 0.8
    max_summary_length: int = 500  # characters
    subscription_tier: str = "free"
    feature_flags: FeatureFlags = field(default_factory=FeatureFlags)

    @property
    def summarization_enabled(self) -> bool:
        return self.feature_flags.enable_memory_summarization


# Free tier still summarizes at these limits; only the explicit plan flag disables it.
DEFAULT_SUMMARIZATION_CONFIG = SummarizationConfig()


class MemorySummarizationFeatures(BaseModel):
    """The ``memory_summarization`` section of a plan's features payload."""

    model_config = ConfigDict(extra="ignore")

    max_memories_per_summary: Optional[int] = Field(default=None, ge=1)
    min_memories_for_summary: Optional[int] = Field(default=None, ge=1)
    similarity_threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("similarity_threshold", "summarization_threshold"),
    )
    max_summary_length: Optional[int] = Field(default=None, ge=1)


class PlanFeatures(BaseModel):
    model_config = ConfigDict(extra="ignore")

    memory_summarization: Optional[MemorySummarizationFeatures] = None
    subscription_tier: Optional[str] = None
    enable_memory_summarization: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("enable_memory_summarization", "enableMemorySummarization"),
    )


def _valid_fields(model: type[BaseModel], payload: dict[str, Any]) -> dict[str, Any]:
    """Entries of ``payload`` that pass ``model`` validation on their own."""
    valid: dict[str, Any] = {}
    for key, value in payload.items():
        try:
            model.model_validate({key: value})
        except ValidationError as e:
            logger.warning(
                "[SummarizationConfig] Ignoring invalid plan feature %s=%r (%d errors)",
                key,
                value,
                e.error_count(),
            )
            continue
        valid[key] = value
    return valid


def config_from_plan_features(
    features: dict[str, Any],
    plan_tier: Optional[str] = None,
    defaults: SummarizationConfig = DEFAULT_SUMMARIZATION_CONFIG,
) -> SummarizationConfig:
    """
    Build a SummarizationConfig from a raw plan features payload.

    Each value is validated on its own; missing or invalid values take
    ``defaults`` without affecting the others. An absent flag leaves
    summarization enabled, and an explicit false disables it even when
    other values are invalid.
    """
    payload = dict(features) if isinstance(features, dict) else {}
    raw_section = payload.pop("memory_summarization", None)

    parsed = PlanFeatures.model_validate(_valid_fields(PlanFeatures, payload))
    section = MemorySummarizationFeatures.model_validate(
        _valid_fields(MemorySummarizationFeatures, raw_section) if isinstance(raw_section, dict) else {}
    )

    enabled = defaults.feature_flags.enable_memory_summarization
    if parsed.enable_memory_summarization is not None:
        enabled = parsed.enable_memory_summarization

    return replace(
        defaults,
        max_memories_per_summary=section.max_memories_per_summary or defaults.max_memories_per_summary,
        min_memories_for_summary=section.min_memories_for_summary or defaults.min_memories_for_summary,
        similarity_threshold=(
            section.similarity_threshold
            if section.similarity_threshold is not None
            else defaults.similarity_threshold
        ),
        max_summary_length=section.max_summary_length or defaults.max_summary_length,
        subscription_tier=parsed.subscription_tier or plan_tier or defaults.subscription_tier,
        feature_flags=FeatureFlags(enable_memory_summarization=enabled),
    )


class SummarizationConfigResolver:
    """Resolves the effective summarization config for an organization."""

    def __init__(
        self,
        subscription_store: SubscriptionStore,
        defaults: SummarizationConfig = DEFAULT_SUMMARIZATION_CONFIG,
    ) -> None:
        self._subscriptions = subscription_store
        self._defaults = defaults

    @property
    def defaults(self) -> SummarizationConfig:
        return self._defaults

    async def get_config_for_organization(self, organization_id: str) -> SummarizationConfig:
        """Return the plan-derived config, or the defaults. Never raises."""
        try:
            subscription = await self._subscriptions.get_subscription_for_organization(
                organization_id
            )
            if subscription is None or subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES:
                logger.warning(
                    "[SummarizationConfig] No active subscription for org %s, using default config",
                    organization_id,
                )
                return self._defaults

            plan = await self._subscriptions.get_plan(subscription.subscription_plan_id)
            if plan is None or not plan.features:
                logger.warning(
                    "[SummarizationConfig] No plan features for plan %s (org %s), using default config",
                    subscription.subscription_plan_id,
                    organization_id,
                )
                return self._defaults

            return config_from_plan_features(plan.features, plan_tier=plan.tier, defaults=self._defaults)
        except Exception as e:
            logger.error(
                "[SummarizationConfig] Config lookup failed for org %s: %s",
                organization_id,
                e,
            )
            return self._defaults
