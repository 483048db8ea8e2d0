"""Tests for the active call registry."""

import pytest

from voice_bridge.bridge.registry import ActiveCallRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestActiveCallRegistry:
    """Test registry lifecycle and expiry."""

    def test_register_and_remove(self) -> None:
        """Test basic add and remove."""
        registry = ActiveCallRegistry()

        entry = registry.register("call-1", caller="+15550100")

        assert entry.call_id == "call-1"
        assert entry.caller == "+15550100"
        assert "call-1" in registry
        assert len(registry) == 1

        assert registry.remove("call-1") is entry
        assert "call-1" not in registry
        assert registry.remove("call-1") is None

    def test_remove_keeps_replacement(self) -> None:
        """Test removing a replaced entry leaves the newer one registered."""
        registry = ActiveCallRegistry()
        first = registry.register("call-1", caller="A")
        second = registry.register("call-1", caller="B")

        assert registry.remove("call-1", first) is None
        assert registry.get("call-1") is second

        assert registry.remove("call-1", second) is second
        assert "call-1" not in registry

    def test_update_stream(self) -> None:
        """Test stream identifier is recorded."""
        registry = ActiveCallRegistry()
        registry.register("call-1")

        assert registry.update_stream("call-1", "SS1")
        assert registry.get("call-1").stream_sid == "SS1"
        assert not registry.update_stream("missing", "SS2")

    def test_expiry(self) -> None:
        """Entries expire ttl seconds after the last touch."""
        clock = FakeClock()
        registry = ActiveCallRegistry(ttl_seconds=10, clock=clock)
        registry.register("call-1")

        clock.now = 10.0
        assert "call-1" in registry

        clock.now = 10.5
        assert registry.get("call-1") is None
        assert len(registry) == 0

    def test_touch_extends(self) -> None:
        """Test touch keeps an entry alive."""
        clock = FakeClock()
        registry = ActiveCallRegistry(ttl_seconds=10, clock=clock)
        registry.register("call-1")

        clock.now = 8.0
        assert registry.touch("call-1")

        clock.now = 16.0
        assert "call-1" in registry
        assert not registry.touch("missing")

    def test_prune(self) -> None:
        """Test prune drops only expired entries."""
        clock = FakeClock()
        registry = ActiveCallRegistry(ttl_seconds=10, clock=clock)
        registry.register("old")
        clock.now = 5.0
        registry.register("new")

        clock.now = 12.0

        assert registry.prune() == 1
        assert [entry.call_id for entry in registry] == ["new"]

    def test_invalid_ttl(self) -> None:
        """Test rejection of non-positive TTL."""
        with pytest.raises(ValueError):
            ActiveCallRegistry(ttl_seconds=0)
