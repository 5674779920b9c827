"""Tests for cross-session user context merging."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from companion.models.session import SessionSummary
from companion.services.user_context import DEFAULT_PREGNANCY_CONTEXT, UserContextStore, merge_unique


def test_merge_unique_keeps_first_occurrence_order() -> None:
    assert merge_unique(["a", "b"], ["b", "c", "a", "d"]) == ["a", "b", "c", "d"]


def test_get_unknown_user_returns_none(clock) -> None:
    store = UserContextStore(clock=clock)

    assert store.get("u1") is None


def test_consecutive_summaries_union_concerns_and_add_counts(clock) -> None:
    store = UserContextStore(clock=clock)

    store.merge_session_summary("u1", {"concerns": ["nausea"], "messageCount": 4})
    context = store.merge_session_summary("u1", {"concerns": ["nausea", "fatigue"], "messageCount": 3})

    assert context.conversation_summary.common_concerns == ["nausea", "fatigue"]
    assert context.total_messages == 7
    assert context.session_count == 2


def test_repeated_summary_is_idempotent_on_lists_but_not_counts(clock) -> None:
    store = UserContextStore(clock=clock)
    summary = SessionSummary(
        concerns=["back pain"],
        preferences=["gentle exercise"],
        topics=["sleep"],
        medical_info=["gestational diabetes screening"],
        recent_topics=["sleep positions"],
        message_count=6,
    )

    once = store.merge_session_summary("u1", summary)
    twice = store.merge_session_summary("u1", summary)

    assert twice.conversation_summary == once.conversation_summary
    assert twice.session_count == 2
    assert twice.total_messages == 12


def test_summary_fields_map_onto_conversation_summary(clock) -> None:
    store = UserContextStore(clock=clock)

    context = store.merge_session_summary(
        "u1",
        SessionSummary(
            concerns=["nausea"],
            preferences=["natural remedies"],
            topics=["nutrition"],
            medical_info=["iron deficiency"],
            recent_topics=["ginger tea"],
            pregnancy_context={"trimester": 1, "week_of_pregnancy": 9},
            message_count=10,
        ),
    )

    summary = context.conversation_summary
    assert summary.common_concerns == ["nausea"]
    assert summary.preferences == ["natural remedies"]
    assert summary.key_topics == ["nutrition"]
    assert summary.medical_history == ["iron deficiency"]
    assert summary.last_discussed == ["ginger tea"]
    assert context.pregnancy_context == {"trimester": 1, "week_of_pregnancy": 9}


def test_last_discussed_is_replaced_and_pregnancy_context_incoming_wins(clock) -> None:
    store = UserContextStore(clock=clock)
    store.merge_session_summary(
        "u1",
        {"recentTopics": ["nausea"], "pregnancyContext": {"trimester": 1, "due_date": "2024-10-01"}, "messageCount": 2},
    )

    context = store.merge_session_summary(
        "u1",
        {"recentTopics": ["kicks"], "pregnancyContext": {"trimester": 2}, "messageCount": 2},
    )

    assert context.conversation_summary.last_discussed == ["kicks"]
    assert context.pregnancy_context == {"trimester": 2, "due_date": "2024-10-01"}


def test_invalid_summary_mapping_is_rejected(clock) -> None:
    store = UserContextStore(clock=clock)

    with pytest.raises(ValidationError):
        store.merge_session_summary("u1", {"concerns": "nausea", "messageCount": 1})

    assert store.get("u1") is None


def test_update_creates_record_and_merges_nested_maps(clock) -> None:
    store = UserContextStore(clock=clock)
    created = store.update("u1", {"pregnancy_context": {"trimester": 1}})
    clock.advance(minutes=5)

    updated = store.update(
        "u1",
        {
            "pregnancy_context": {"week_of_pregnancy": 12},
            "behavior_insights": {"preferred_response_style": "concise"},
            "conversation_summary": {"common_concerns": ["fatigue"]},
        },
    )

    assert updated.pregnancy_context == {"trimester": 1, "week_of_pregnancy": 12}
    assert updated.behavior_insights.preferred_response_style == "concise"
    assert updated.behavior_insights.frequent_questions == []
    assert updated.conversation_summary.common_concerns == ["fatigue"]
    assert updated.created_at == created.created_at
    assert updated.last_updated == clock.now


def test_update_never_shrinks_accumulated_lists(clock) -> None:
    store = UserContextStore(clock=clock)
    store.merge_session_summary("u1", {"concerns": ["nausea", "fatigue"], "messageCount": 1})

    context = store.update("u1", {"conversation_summary": {"common_concerns": ["heartburn"]}})

    assert context.conversation_summary.common_concerns == ["nausea", "fatigue", "heartburn"]


def test_update_ignores_identity_fields(clock) -> None:
    store = UserContextStore(clock=clock)

    context = store.update("u1", {"user_id": "someone-else", "session_count": 4})

    assert context.user_id == "u1"
    assert context.session_count == 4
    assert store.get("someone-else") is None


def test_returned_context_is_detached(clock) -> None:
    store = UserContextStore(clock=clock)
    store.merge_session_summary("u1", {"concerns": ["nausea"], "messageCount": 1})

    context = store.get("u1")
    context.conversation_summary.common_concerns.append("tampered")

    assert store.get("u1").conversation_summary.common_concerns == ["nausea"]


def test_pregnancy_context_default_when_no_record(clock) -> None:
    store = UserContextStore(clock=clock)

    assert store.get_pregnancy_context("u1") == DEFAULT_PREGNANCY_CONTEXT
    assert store.get("u1") is None


def test_pregnancy_context_flattens_summary(clock) -> None:
    store = UserContextStore(clock=clock)
    store.merge_session_summary(
        "u1",
        {
            "concerns": ["nausea"],
            "preferences": ["natural remedies"],
            "recentTopics": ["hydration"],
            "pregnancyContext": {"trimester": 2, "week_of_pregnancy": 18},
            "messageCount": 8,
        },
    )

    assert store.get_pregnancy_context("u1") == {
        "trimester": 2,
        "week_of_pregnancy": 18,
        "common_concerns": ["nausea"],
        "preferences": ["natural remedies"],
        "recent_topics": ["hydration"],
    }


def test_clear_removes_only_that_user(clock) -> None:
    store = UserContextStore(clock=clock)
    store.merge_session_summary("u1", {"concerns": ["nausea"], "messageCount": 1})
    store.merge_session_summary("u2", {"concerns": ["fatigue"], "messageCount": 1})

    assert store.clear("u1") is True
    assert store.clear("u1") is False
    assert store.get("u1") is None
    assert store.get("u2").conversation_summary.common_concerns == ["fatigue"]
    assert store.user_ids() == ["u2"]


def test_stats_aggregate_sessions_and_messages(clock) -> None:
    store = UserContextStore(clock=clock)
    store.merge_session_summary("u1", {"messageCount": 10})
    store.merge_session_summary("u1", {"messageCount": 6})
    store.merge_session_summary("u2", {"messageCount": 4})

    stats = store.stats()

    assert stats.total_users == 2
    assert stats.total_sessions == 3
    assert stats.total_messages == 20
    assert stats.average_messages_per_user == 10
