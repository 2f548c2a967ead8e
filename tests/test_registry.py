"""Tests for the participant registry."""
import random

import pytest

from chatsession.errors import DuplicateConnection, SessionFull
from chatsession.registry import ParticipantRegistry


@pytest.fixture
def registry():
    return ParticipantRegistry(max_participants=4, rng=random.Random(42))


class TestJoinLeave:

    def test_join_assigns_default_name_and_color(self, registry):
        participant = registry.on_join(1)

        assert participant.connection_id == 1
        assert participant.display_name.startswith("Player")
        assert 1000 <= int(participant.display_name[len("Player"):]) <= 9999
        assert len(participant.color) == 3
        assert all(128 <= c <= 255 for c in participant.color)

    def test_duplicate_join_raises(self, registry):
        registry.on_join(1)
        with pytest.raises(DuplicateConnection):
            registry.on_join(1)
        assert len(registry) == 1

    def test_rejoin_after_leave_is_allowed(self, registry):
        registry.on_join(1)
        registry.on_leave(1)
        registry.on_join(1)
        assert len(registry) == 1

    def test_full_roster_rejects_join(self, registry):
        for connection_id in range(1, 5):
            registry.on_join(connection_id)

        with pytest.raises(SessionFull):
            registry.on_join(5)
        assert len(registry) == 4
        assert registry.lookup(5) is None

    def test_leave_unknown_is_noop(self, registry):
        registry.on_join(1)
        assert registry.on_leave(99) is None
        assert registry.on_leave(1).connection_id == 1
        assert registry.on_leave(1) is None
        assert len(registry) == 0

    def test_lookup_after_leave_returns_none(self, registry):
        registry.on_join(7)
        registry.on_leave(7)
        assert registry.lookup(7) is None

    def test_roster_size_matches_joins_minus_leaves(self):
        rng = random.Random(1234)
        registry = ParticipantRegistry(max_participants=1000, rng=random.Random(0))
        live = set()
        next_id = 1
        for _ in range(500):
            if live and rng.random() < 0.4:
                leaving = rng.choice(sorted(live))
                registry.on_leave(leaving)
                live.discard(leaving)
            else:
                registry.on_join(next_id)
                live.add(next_id)
                next_id += 1
            assert len(registry) == len(live)
        assert {p.connection_id for p in registry.enumerate()} == live


class TestMutation:

    def test_rename(self, registry):
        registry.on_join(1)
        participant = registry.rename(1, "  Alice  ")
        assert participant.display_name == "Alice"
        assert registry.lookup(1).display_name == "Alice"

    def test_blank_rename_substitutes_default(self, registry):
        registry.on_join(1)
        registry.rename(1, "Alice")
        participant = registry.rename(1, "   ")
        assert participant.display_name.startswith("Player")

    def test_rename_unknown_connection(self, registry):
        assert registry.rename(3, "Mallory") is None

    def test_set_color_only_touches_owner(self, registry):
        registry.on_join(1)
        registry.on_join(2)
        before = registry.lookup(2).color

        registry.set_color(1, (10, 20, 30))

        assert registry.lookup(1).color == (10, 20, 30)
        assert registry.lookup(2).color == before
        assert registry.set_color(9, (1, 2, 3)) is None


class TestEnumerate:

    def test_join_order(self, registry):
        for connection_id in (3, 1, 2):
            registry.on_join(connection_id)
        assert [p.connection_id for p in registry.enumerate()] == [3, 1, 2]

    def test_snapshot_is_isolated_from_mutation(self, registry):
        registry.on_join(1)
        registry.on_join(2)
        snapshot = registry.enumerate()

        registry.on_leave(1)
        registry.rename(2, "Bob")

        assert [p.connection_id for p in snapshot] == [1, 2]
        assert snapshot[1].display_name != "Bob"
