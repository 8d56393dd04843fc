"""Tests for SessionRegistry."""

from types import SimpleNamespace

from ptyvisor.registry import SessionRegistry


def fake_session(session_id: str):
    return SimpleNamespace(session_id=session_id)


class TestSessionRegistry:
    """Tests for reservation, commit and kill resolution."""

    def test_reserve_blocks_duplicates(self):
        registry = SessionRegistry()
        assert registry.reserve("a")
        assert not registry.reserve("a")

        registry.commit(fake_session("a"))
        assert not registry.reserve("a")
        assert "a" in registry
        assert len(registry) == 1

    def test_release_frees_id(self):
        registry = SessionRegistry()
        registry.reserve("a")

        assert registry.release("a") is False
        assert registry.reserve("a")
        assert "a" not in registry

    def test_kill_target_outcomes(self):
        """Test live, spawning, exited and unknown ids are told apart."""
        registry = SessionRegistry()
        live = fake_session("live")
        registry.reserve("live")
        registry.commit(live)
        registry.reserve("gone")
        registry.commit(fake_session("gone"))
        registry.remove("gone")
        registry.reserve("spawning")

        assert registry.kill_target("live") == (live, "live")
        assert registry.kill_target("spawning") == (None, "deferred")
        assert registry.kill_target("gone") == (None, "exited")
        assert registry.kill_target("never") == (None, "unknown")

    def test_kill_while_spawning_handed_to_commit(self):
        """Test a kill recorded during spawn is returned exactly once by commit."""
        registry = SessionRegistry()
        registry.reserve("s")
        registry.kill_target("s")

        assert registry.commit(fake_session("s")) is True
        assert registry.get("s") is not None

        registry.remove("s")
        registry.reserve("s")
        assert registry.commit(fake_session("s")) is False

    def test_kill_while_spawning_handed_to_release(self):
        registry = SessionRegistry()
        registry.reserve("s")
        registry.kill_target("s")

        assert registry.release("s") is True
        assert registry.kill_target("s") == (None, "unknown")

    def test_exited_history_is_bounded(self):
        registry = SessionRegistry(exited_history=2)
        for session_id in ("a", "b", "c"):
            registry.reserve(session_id)
            registry.commit(fake_session(session_id))
            registry.remove(session_id)

        assert registry.kill_target("a") == (None, "unknown")
        assert registry.kill_target("c") == (None, "exited")
        assert registry.ids() == []
