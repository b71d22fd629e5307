"""Tests for branch context assembly."""

import pytest

from driftline.context import (
    BranchContext,
    BranchFacts,
    ContextAssembler,
    ContextMessage,
    assemble_ephemeral_context,
    format_context_for_prompt,
)
from driftline.ephemeral import EphemeralBranch, EphemeralMessage, EphemeralState
from driftline.errors import NotFoundError
from driftline.facts import FactStatus, FactValue
from driftline.store import SQLiteDriftStore

TENANT = "anonymous"


@pytest.fixture
def tree(store: SQLiteDriftStore):
    """Paris trip -> Hotels -> Booking, with facts on each level."""
    store.ensure_conversation(TENANT, "c1")
    paris = store.create_branch(TENANT, "c1", "Paris trip")
    hotels = store.create_branch(TENANT, "c1", "Hotels", parent_id=paris.id)
    booking = store.create_branch(TENANT, "c1", "Booking", parent_id=hotels.id)
    store.replace_facts(
        paris.id,
        {
            "destination": [FactValue("Paris", "m1")],
            "budget": [FactValue("1500 euros", "m1", status=FactStatus.SUPERSEDED)],
        },
    )
    store.replace_facts(hotels.id, {"area": [FactValue("Le Marais", "m2")]})
    for text in ["Book the hotel", "For 4 nights", "Two guests"]:
        store.create_message(TENANT, "c1", booking.id, "user", text, "STAY", "r")
    return paris, hotels, booking


class TestContextAssembler:
    """Tests for ContextAssembler."""

    def test_walks_ancestors(self, store: SQLiteDriftStore, tree):
        paris, hotels, booking = tree

        ctx = ContextAssembler(store).get(booking.id)

        assert ctx.branch_topic == "Booking"
        assert [b.branch_id for b in ctx.all_facts] == [booking.id, hotels.id, paris.id]
        assert [b.is_current for b in ctx.all_facts] == [True, False, False]
        assert [m.content for m in ctx.messages] == ["Book the hotel", "For 4 nights", "Two guests"]

    def test_only_active_facts(self, store: SQLiteDriftStore, tree):
        paris, _, booking = tree

        ctx = ContextAssembler(store).get(booking.id)

        assert list(ctx.all_facts[2].facts) == ["destination"]

    def test_max_ancestor_depth(self, store: SQLiteDriftStore, tree):
        _, hotels, booking = tree

        ctx = ContextAssembler(store).get(booking.id, max_ancestor_depth=1)

        assert [b.branch_id for b in ctx.all_facts] == [booking.id, hotels.id]

    def test_without_ancestors(self, store: SQLiteDriftStore, tree):
        _, _, booking = tree
        ctx = ContextAssembler(store).get(booking.id, include_ancestor_facts=False)
        assert len(ctx.all_facts) == 1

    def test_max_messages_keeps_most_recent(self, store: SQLiteDriftStore, tree):
        _, _, booking = tree
        ctx = ContextAssembler(store).get(booking.id, max_messages=2)
        assert [m.content for m in ctx.messages] == ["For 4 nights", "Two guests"]

    def test_unknown_branch(self, store: SQLiteDriftStore):
        with pytest.raises(NotFoundError):
            ContextAssembler(store).get("missing")

    def test_conversation_facts_oldest_first(self, store: SQLiteDriftStore, tree):
        paris, hotels, booking = tree

        blocks = ContextAssembler(store).conversation_facts(TENANT, "c1")

        assert [b.branch_id for b in blocks] == [paris.id, hotels.id, booking.id]
        assert blocks[2].facts == {}

    def test_to_dict(self, store: SQLiteDriftStore, tree):
        _, hotels, booking = tree

        data = ContextAssembler(store).get(booking.id).to_dict()

        assert data["branchTopic"] == "Booking"
        assert data["allFacts"][1] == {
            "branchId": hotels.id,
            "branchTopic": "Hotels",
            "isCurrent": False,
            "facts": [{"key": "area", "value": "Le Marais", "confidence": 1.0}],
        }


class TestEphemeralContext:
    """Tests for assemble_ephemeral_context."""

    def make_state(self) -> EphemeralState:
        root = EphemeralBranch(id="b0", topic="Paris trip", facts={"city": [FactValue("Paris", "m0")]})
        child = EphemeralBranch(id="b1", topic="Hotels", parent_id="b0", depth=1)
        messages = [
            EphemeralMessage("m0", "user", "Trip to Paris", "b0", "Paris trip", "BRANCH"),
            EphemeralMessage("m1", "user", "Hotels?", "b1", "Hotels", "BRANCH"),
            EphemeralMessage("m2", "assistant", "Try Le Marais", "b1", "Hotels", "STAY"),
        ]
        return EphemeralState("c1", branches=[root, child], messages=messages)

    def test_inherits_parent_facts(self):
        ctx = assemble_ephemeral_context(self.make_state(), "b1")

        assert [m.id for m in ctx.messages] == ["m1", "m2"]
        assert ctx.all_facts[1].facts["city"][0].value == "Paris"

    def test_cycle_terminates(self):
        state = self.make_state()
        state.branches[0].parent_id = "b1"

        ctx = assemble_ephemeral_context(state, "b1")

        assert [b.branch_id for b in ctx.all_facts] == ["b1", "b0"]

    def test_unknown_branch(self):
        with pytest.raises(NotFoundError):
            assemble_ephemeral_context(self.make_state(), "nope")


class TestFormatContextForPrompt:
    """Tests for format_context_for_prompt."""

    def test_empty(self):
        assert format_context_for_prompt(BranchContext("b1", "Hotels")) == ""

    def test_facts_and_messages(self):
        ctx = BranchContext(
            branch_id="b1",
            branch_topic="Hotels",
            messages=[
                ContextMessage("m1", "user", "Hotels?"),
                ContextMessage("m2", "assistant", "Try Le Marais"),
            ],
            all_facts=[
                BranchFacts("b1", "Hotels", True, {}),
                BranchFacts(
                    "b0",
                    "Paris trip",
                    False,
                    {"dates": [FactValue("May 3", "m0"), FactValue("May 10", "m0")]},
                ),
            ],
        )

        assert format_context_for_prompt(ctx) == (
            "<context>\n"
            "## Known facts\n"
            "### Paris trip (from earlier topic)\n"
            "- dates: May 3, May 10\n"
            "\n"
            "## Conversation: Hotels\n"
            "USER: Hotels?\n"
            "ASSISTANT: Try Le Marais\n"
            "</context>"
        )
