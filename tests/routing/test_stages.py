"""Tests for the persisted pipeline stages."""

from unittest.mock import AsyncMock, Mock

import pytest

from driftline.config import DriftPolicy
from driftline.errors import InputValidationError, NotFoundError
from driftline.facts import ExtractedFact, ExtractedValue, FactStatus, merge_facts
from driftline.routing import (
    BranchDecision,
    BranchSummary,
    Classification,
    DriftContext,
    PipelineDeps,
    RouteDecision,
    StayDecision,
    bound_summaries,
)
from driftline.routing.stages import execute_route, load_branches, validate_input
from driftline.store import SQLiteDriftStore

TENANT = "anonymous"


def make_ctx(content: str = "hello", role: str = "user", **kwargs) -> DriftContext:
    return DriftContext(conversation_id="conv-1", content=content, role=role, **kwargs)


def seed_branch(store: SQLiteDriftStore, topic: str, parent_id: str | None = None):
    store.ensure_conversation(TENANT, "conv-1")
    branch = store.create_branch(TENANT, "conv-1", topic, parent_id=parent_id)
    store.create_message(TENANT, "conv-1", branch.id, "user", f"about {topic}", "BRANCH", "new")
    store.set_last_active_branch(TENANT, "conv-1", branch.id)
    return store.get_branch(branch.id)


class TestValidateInput:
    """Tests for input validation."""

    @pytest.mark.asyncio
    async def test_valid(self):
        result = await validate_input(make_ctx())
        assert result.reason_codes == ("input_valid",)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"content": ""},
            {"content": "   "},
            {"role": "system"},
            {"content": 42},
            {"role": ["user"]},
        ],
    )
    async def test_invalid_fields(self, kwargs):
        with pytest.raises(InputValidationError):
            await validate_input(make_ctx(**kwargs))

    @pytest.mark.asyncio
    async def test_missing_conversation_id(self):
        ctx = DriftContext(conversation_id="", content="hi", role="user")
        with pytest.raises(InputValidationError, match="conversationId"):
            await validate_input(ctx)

    @pytest.mark.asyncio
    async def test_public_message_explains(self):
        with pytest.raises(InputValidationError) as exc_info:
            await validate_input(make_ctx(content=""))
        assert exc_info.value.public_message == "content is required"


class TestBoundSummaries:
    """Tests for the candidate bound."""

    def make(self, n: int, current: int) -> list[BranchSummary]:
        return [
            BranchSummary(id=f"b{i}", topic=f"t{i}", message_count=1, is_current=i == current)
            for i in range(n)
        ]

    def test_under_limit(self):
        summaries = self.make(3, 0)
        assert bound_summaries(summaries, 10) == tuple(summaries)

    def test_keeps_most_recent(self):
        bounded = bound_summaries(self.make(5, 1), 3)
        assert [s.id for s in bounded] == ["b0", "b1", "b2"]

    def test_current_is_never_dropped(self):
        """An old current branch replaces the last slot."""
        bounded = bound_summaries(self.make(5, 4), 3)
        assert [s.id for s in bounded] == ["b0", "b1", "b4"]


class TestLoadBranches:
    """Tests for branch loading and current-branch resolution."""

    @pytest.mark.asyncio
    async def test_new_conversation(self, store: SQLiteDriftStore):
        result = await load_branches(make_ctx(), store)

        assert result.current_branch is None
        assert result.branches == ()
        assert result.reason_codes == ("new_conversation",)

    @pytest.mark.asyncio
    async def test_uses_last_active_pointer(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        seed_branch(store, "Italian recipes")
        store.set_last_active_branch(TENANT, "conv-1", paris.id)

        result = await load_branches(make_ctx(), store)

        assert result.current_branch.id == paris.id
        assert result.current_branch_id == paris.id
        assert result.current_summary.topic == "Paris trip"
        assert [b.topic for b in result.other_summaries] == ["Italian recipes"]
        assert "branches_loaded" in result.reason_codes

    @pytest.mark.asyncio
    async def test_explicit_branch_wins(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        seed_branch(store, "Italian recipes")

        result = await load_branches(make_ctx(current_branch_id=paris.id), store)

        assert result.current_branch.id == paris.id

    @pytest.mark.asyncio
    async def test_unknown_explicit_branch(self, store: SQLiteDriftStore):
        seed_branch(store, "Paris trip")

        with pytest.raises(NotFoundError):
            await load_branches(make_ctx(current_branch_id="missing"), store)

    @pytest.mark.asyncio
    async def test_most_recent_without_pointer(self, store: SQLiteDriftStore):
        seed_branch(store, "Paris trip")
        food = seed_branch(store, "Italian recipes")
        conn = store._get_connection()
        conn.execute("UPDATE conversations SET last_active_branch_id = NULL")
        conn.commit()

        result = await load_branches(make_ctx(), store)

        assert result.current_branch.id == food.id

    @pytest.mark.asyncio
    async def test_recent_messages_same_role(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        store.create_message(TENANT, "conv-1", paris.id, "assistant", "Sure!", "STAY", "auto")
        store.create_message(TENANT, "conv-1", paris.id, "user", "Hotels?", "STAY", "x")

        result = await load_branches(make_ctx(), store)

        assert [m.content for m in result.recent_messages] == ["about Paris trip", "Hotels?"]

    @pytest.mark.asyncio
    async def test_fact_keys_in_summaries(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        facts = {}
        merge_facts(
            facts,
            [ExtractedFact(key="city", values=(ExtractedValue("Paris"),))],
            "m1",
        )
        store.replace_facts(paris.id, facts)

        result = await load_branches(make_ctx(), store)

        assert result.current_summary.fact_keys == ("city",)

    @pytest.mark.asyncio
    async def test_bounded_by_policy(self, store: SQLiteDriftStore):
        for i in range(4):
            seed_branch(store, f"topic {i}")

        result = await load_branches(
            make_ctx(policy=DriftPolicy(max_branches_for_context=2)), store
        )

        assert len(result.branches) == 2


class TestExecuteRoute:
    """Tests for applying a classification."""

    def deps(self, store: SQLiteDriftStore, **kwargs) -> PipelineDeps:
        return PipelineDeps(store=store, classifier=AsyncMock(), **kwargs)

    @pytest.mark.asyncio
    async def test_branch_creates_root_branch(self, store: SQLiteDriftStore):
        ctx = make_ctx(
            "I want to plan a trip to Paris",
            classification=Classification(BranchDecision("Paris trip"), "new", 0.9),
        )

        result = await execute_route(ctx, self.deps(store))

        assert result.branch.topic == "Paris trip"
        assert result.branch.depth == 0
        assert result.branch.parent_id is None
        assert result.branch.message_count == 1
        assert result.message.branch_id == result.branch.id
        assert result.message.action == "BRANCH"
        conversation = store.get_conversation(TENANT, "conv-1")
        assert conversation.last_active_branch_id == result.branch.id

    @pytest.mark.asyncio
    async def test_stay_increments_count(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        ctx = make_ctx(
            "Hotels near the Eiffel Tower?",
            current_branch=paris,
            classification=Classification(StayDecision(), "same topic", 0.9),
        )

        result = await execute_route(ctx, self.deps(store))

        assert result.branch.id == paris.id
        assert result.branch.message_count == paris.message_count + 1
        assert result.branch.topic == "Paris trip"

    @pytest.mark.asyncio
    async def test_stay_without_branch_fails_before_writing(self, store: SQLiteDriftStore):
        ctx = make_ctx(
            "Hi there",
            role="assistant",
            classification=Classification(StayDecision(), "auto", 1.0),
        )

        with pytest.raises(InputValidationError):
            await execute_route(ctx, self.deps(store))

        assert store.get_conversation(TENANT, "conv-1") is None

    @pytest.mark.asyncio
    async def test_route_to_missing_branch(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        ctx = make_ctx(
            current_branch=paris,
            classification=Classification(RouteDecision("missing"), "r", 0.9),
        )

        with pytest.raises(NotFoundError):
            await execute_route(ctx, self.deps(store))

    @pytest.mark.asyncio
    async def test_leaving_branch_enqueues_extraction(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        food = seed_branch(store, "Italian recipes")
        queue = Mock()
        ctx = make_ctx(
            "Back to Paris",
            current_branch=food,
            classification=Classification(RouteDecision(paris.id), "r", 0.9),
        )

        result = await execute_route(ctx, self.deps(store, extraction_queue=queue))

        queue.enqueue.assert_called_once_with(food.id)
        assert "facts_extraction_triggered" in result.reason_codes
        assert result.branch.id == paris.id

    @pytest.mark.asyncio
    async def test_stay_does_not_enqueue(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        queue = Mock()
        ctx = make_ctx(
            current_branch=paris,
            classification=Classification(StayDecision(), "s", 0.9),
        )

        await execute_route(ctx, self.deps(store, extraction_queue=queue))

        queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_branch_has_parent_and_depth(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        ctx = make_ctx(
            "Also, I got a job offer",
            current_branch=paris,
            classification=Classification(BranchDecision("Job offer"), "new", 0.9),
        )

        result = await execute_route(ctx, self.deps(store))

        assert result.branch.parent_id == paris.id
        assert result.branch.depth == 1

    @pytest.mark.asyncio
    async def test_embedding_seeds_then_averages_centroid(self, store: SQLiteDriftStore):
        embedder = AsyncMock()
        embedder.embed = AsyncMock(side_effect=[[1.0, 2.0, 3.0], [2.0, 4.0, 6.0]])
        deps = self.deps(store, embedder=embedder)

        first = await execute_route(
            make_ctx(classification=Classification(BranchDecision("Paris"), "n", 0.9)), deps
        )
        assert first.branch.centroid == [1.0, 2.0, 3.0]
        assert "message_embedded" in first.reason_codes

        second = await execute_route(
            make_ctx(
                current_branch=first.branch,
                classification=Classification(StayDecision(), "s", 0.9),
            ),
            deps,
        )
        assert second.branch.centroid == [1.5, 3.0, 4.5]
        assert "centroid_updated" in second.reason_codes

    @pytest.mark.asyncio
    async def test_facts_and_context_applied(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        ctx = make_ctx(
            "Budget is 2000 euros",
            current_branch=paris,
            classification=Classification(
                StayDecision(),
                "s",
                0.9,
                branch_context="Planning a Paris trip on a budget",
                facts=(ExtractedFact("budget", (ExtractedValue("2000 euros"),)),),
            ),
        )

        result = await execute_route(ctx, self.deps(store))

        assert result.branch.context == "Planning a Paris trip on a budget"
        assert result.branch.topic == "Paris trip"
        facts = store.get_facts(paris.id)
        assert facts["budget"][0].value == "2000 euros"
        assert facts["budget"][0].message_id == result.message.id
        assert facts["budget"][0].status is FactStatus.ACTIVE
        assert "facts_merged" in result.reason_codes

    @pytest.mark.asyncio
    async def test_context_untouched_without_extraction(self, store: SQLiteDriftStore):
        paris = seed_branch(store, "Paris trip")
        store.update_branch_context(paris.id, "Existing summary")
        ctx = make_ctx(
            current_branch=paris,
            classification=Classification(StayDecision(), "s", 0.9),
        )

        result = await execute_route(ctx, self.deps(store))

        assert result.branch.context == "Existing summary"
