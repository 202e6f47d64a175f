"""Tests for health-aware tool selection in ToolPolicyFilter."""

import pytest

from veriloop.orchestrator.tool_policy import DEGRADED_PREFIX, ToolPolicyFilter
from veriloop.tools.health import ToolHealthTracker
from veriloop.tools.models import ToolDefinition


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _tool(name, provider, description="does things"):
    return ToolDefinition(name=name, provider=provider, description=description)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return ToolHealthTracker(clock=clock)


@pytest.fixture
def tools():
    return [
        _tool("get_forecast", "weather"),
        _tool("search", "web"),
        _tool("convert", "units"),
    ]


def _names(selection):
    return [s["function"]["name"] for s in selection.schemas]


class TestGlobalLists:

    def test_deny_blocks_tool(self, tracker, tools):
        policy = ToolPolicyFilter(tracker)
        policy.set_global_deny({"search"})
        assert _names(policy.select(tools)) == ["get_forecast", "convert"]

    def test_allow_restricts_tools(self, tracker, tools):
        policy = ToolPolicyFilter(tracker, allow={"convert"})
        assert _names(policy.select(tools)) == ["convert"]

    def test_deny_wins_over_allow(self, tracker, tools):
        policy = ToolPolicyFilter(tracker, allow={"convert"}, deny={"convert"})
        assert _names(policy.select(tools)) == []

    def test_clearing_allow(self, tracker, tools):
        policy = ToolPolicyFilter(tracker, allow={"convert"})
        policy.set_global_allow(None)
        assert len(policy.select(tools).schemas) == 3


class TestHealthFiltering:

    def test_all_healthy_keeps_order(self, tracker, tools):
        selection = ToolPolicyFilter(tracker).select(tools)
        assert _names(selection) == ["get_forecast", "search", "convert"]
        assert selection.unavailable_providers == []
        assert selection.demoted_providers == []

    def test_degraded_provider_is_demoted(self, tracker, tools):
        tracker.mark_failure("weather", "timed out")
        selection = ToolPolicyFilter(tracker).select(tools)

        assert _names(selection) == ["search", "convert", "get_forecast"]
        assert selection.schemas[-1]["function"]["description"].startswith(DEGRADED_PREFIX)
        assert selection.demoted_providers == ["weather"]

    def test_unhealthy_provider_is_excluded(self, tracker, tools):
        for _ in range(3):
            tracker.mark_failure("weather", "timed out")
        selection = ToolPolicyFilter(tracker).select(tools)

        assert _names(selection) == ["search", "convert"]
        assert selection.unavailable_providers == ["weather"]
        assert selection.provider_for("get_forecast") is None

    def test_probe_after_interval(self, tracker, tools, clock):
        for _ in range(3):
            tracker.mark_failure("weather", "timed out")
        clock.now += 61

        policy = ToolPolicyFilter(tracker)
        first = policy.select(tools)
        second = policy.select(tools)

        assert "get_forecast" in _names(first)
        assert first.schemas[-1]["function"]["description"].startswith(DEGRADED_PREFIX)
        assert "get_forecast" not in _names(second)
        assert second.unavailable_providers == ["weather"]

    def test_provider_for_maps_exposed_name(self, tracker):
        tool = ToolDefinition(name="lookup", provider="kb", model_name="kb__lookup")
        selection = ToolPolicyFilter(tracker).select([tool])
        assert selection.provider_for("kb__lookup") is tool
        assert selection.provider_for("lookup") is None
