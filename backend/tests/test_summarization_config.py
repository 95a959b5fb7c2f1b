import asyncio

from fakes import ORG_A, ORG_B, PLAN_ID, FakeSubscriptionStore, enabled_plan
from services.memory_types import PlanRecord, SubscriptionRecord
from services.summarization_config import (
    DEFAULT_SUMMARIZATION_CONFIG,
    SummarizationConfigResolver,
    config_from_plan_features,
)


def _resolve(store: FakeSubscriptionStore, organization_id: str = ORG_A):
    resolver = SummarizationConfigResolver(store)
    return asyncio.run(resolver.get_config_for_organization(organization_id))


def test_defaults_match_free_tier_limits() -> None:
    config = DEFAULT_SUMMARIZATION_CONFIG

    assert config.max_memories_per_summary == 10
    assert config.min_memories_for_summary == 3
    assert config.similarity_threshold == 0.8
    assert config.max_summary_length == 500
    assert config.subscription_tier == "free"
    assert config.summarization_enabled is True


def test_plan_features_override_defaults(subscription_store: FakeSubscriptionStore) -> None:
    subscription_store.plans[PLAN_ID] = enabled_plan(
        max_memories_per_summary=20,
        min_memories_for_summary=5,
        similarity_threshold=0.9,
        max_summary_length=1000,
    )

    config = _resolve(subscription_store)

    assert config.max_memories_per_summary == 20
    assert config.min_memories_for_summary == 5
    assert config.similarity_threshold == 0.9
    assert config.max_summary_length == 1000
    assert config.subscription_tier == "pro"
    assert config.summarization_enabled is True


def test_missing_plan_values_fall_back_individually() -> None:
    config = config_from_plan_features({"memory_summarization": {"max_summary_length": 250}})

    assert config.max_summary_length == 250
    assert config.max_memories_per_summary == 10
    assert config.similarity_threshold == 0.8


def test_absent_flag_leaves_summarization_enabled() -> None:
    config = config_from_plan_features({"subscription_tier": "enterprise"})

    assert config.summarization_enabled is True
    assert config.subscription_tier == "enterprise"


def test_explicit_false_flag_disables_summarization() -> None:
    config = config_from_plan_features({"enableMemorySummarization": False})

    assert config.summarization_enabled is False


def test_legacy_threshold_key_is_accepted() -> None:
    config = config_from_plan_features({"memory_summarization": {"summarization_threshold": 0.65}})

    assert config.similarity_threshold == 0.65


def test_zero_threshold_is_kept() -> None:
    config = config_from_plan_features({"memory_summarization": {"similarity_threshold": 0.0}})

    assert config.similarity_threshold == 0.0


def test_invalid_values_fall_back_one_field_at_a_time() -> None:
    config = config_from_plan_features(
        {
            "memory_summarization": {
                "similarity_threshold": 1.5,
                "max_memories_per_summary": 0,
                "max_summary_length": 300,
            },
            "subscription_tier": "pro",
        }
    )

    assert config.similarity_threshold == 0.8
    assert config.max_memories_per_summary == 10
    assert config.max_summary_length == 300
    assert config.subscription_tier == "pro"


def test_explicit_false_flag_survives_invalid_limits() -> None:
    config = config_from_plan_features(
        {
            "enableMemorySummarization": False,
            "memory_summarization": {"max_memories_per_summary": 0},
        }
    )

    assert config.summarization_enabled is False
    assert config.max_memories_per_summary == 10


def test_resolver_keeps_disabled_flag_when_limits_are_invalid(
    subscription_store: FakeSubscriptionStore,
) -> None:
    subscription_store.plans[PLAN_ID] = PlanRecord(
        id=PLAN_ID,
        tier="pro",
        features={
            "enableMemorySummarization": False,
            "memory_summarization": {"max_memories_per_summary": 0, "similarity_threshold": "high"},
        },
    )

    config = _resolve(subscription_store)

    assert config.summarization_enabled is False
    assert config.subscription_tier == "pro"


def test_no_subscription_uses_defaults(subscription_store: FakeSubscriptionStore) -> None:
    assert _resolve(subscription_store, ORG_B) == DEFAULT_SUMMARIZATION_CONFIG


def test_inactive_subscription_uses_defaults(subscription_store: FakeSubscriptionStore) -> None:
    subscription_store.subscriptions[ORG_A] = SubscriptionRecord(
        organization_id=ORG_A, subscription_plan_id=PLAN_ID, status="canceled"
    )

    assert _resolve(subscription_store) == DEFAULT_SUMMARIZATION_CONFIG


def test_plan_without_features_uses_defaults(subscription_store: FakeSubscriptionStore) -> None:
    subscription_store.plans[PLAN_ID] = PlanRecord(id=PLAN_ID, features=None, tier="pro")

    assert _resolve(subscription_store) == DEFAULT_SUMMARIZATION_CONFIG


def test_store_errors_use_defaults(subscription_store: FakeSubscriptionStore) -> None:
    subscription_store.error = ConnectionError("database unavailable")

    assert _resolve(subscription_store) == DEFAULT_SUMMARIZATION_CONFIG


def test_invalid_plan_features_use_defaults(subscription_store: FakeSubscriptionStore) -> None:
    subscription_store.plans[PLAN_ID] = PlanRecord(
        id=PLAN_ID,
        features={"memory_summarization": {"max_memories_per_summary": "lots"}},
    )

    assert _resolve(subscription_store) == DEFAULT_SUMMARIZATION_CONFIG


def test_config_is_recomputed_on_every_call(subscription_store: FakeSubscriptionStore) -> None:
    resolver = SummarizationConfigResolver(subscription_store)

    first = asyncio.run(resolver.get_config_for_organization(ORG_A))
    subscription_store.plans[PLAN_ID] = enabled_plan(max_summary_length=42)
    second = asyncio.run(resolver.get_config_for_organization(ORG_A))

    assert first.max_summary_length == 500
    assert second.max_summary_length == 42
