"""Tests for navigation plan parsing and the network-quiet wait."""
import asyncio
import json

import pytest

from apiscout.session.plan import (
    ClickStep,
    GotoStep,
    NavigationPlan,
    ScrollStep,
    WaitIdleStep,
    load_plan,
    wait_for_network_quiet,
)


class _Tap:
    def __init__(self):
        self.captured_count = 0
        self.pending = 0


class _Page:
    def __init__(self, tap, bursts=0):
        self.tap = tap
        self.bursts = bursts

    async def wait_for_timeout(self, ms):
        await asyncio.sleep(ms / 1000)
        if self.bursts:
            self.bursts -= 1
            self.tap.captured_count += 1


def test_from_dict_builds_steps():
    plan = NavigationPlan.from_dict({
        "start_url": "https://a.test/feed",
        "steps": [
            {"action": "click", "selector": "button.more", "required": False},
            {"action": "scroll", "max_scrolls": 5},
            {"action": "wait_idle", "idle_ms": 500},
            {"action": "goto", "url": "https://a.test/other"},
        ],
    })

    steps = plan.all_steps()
    assert isinstance(steps[0], GotoStep) and steps[0].url == "https://a.test/feed"
    assert steps[1] == ClickStep("button.more", required=False)
    assert steps[2] == ScrollStep(max_scrolls=5)
    assert steps[3] == WaitIdleStep(idle_ms=500)
    assert steps[4].describe() == "goto https://a.test/other"


def test_plan_without_start_url():
    plan = NavigationPlan(steps=[ScrollStep()])
    assert plan.all_steps() == [ScrollStep()]


def test_unknown_action_rejected():
    with pytest.raises(ValueError, match="Unknown plan action"):
        NavigationPlan.from_dict({"steps": [{"action": "hover", "selector": "a"}]})


def test_bad_step_arguments_rejected():
    with pytest.raises(ValueError, match="Bad arguments for 'scroll'"):
        NavigationPlan.from_dict({"steps": [{"action": "scroll", "speed": 3}]})


def test_load_plan(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"steps": [{"action": "click", "selector": "#go"}]}))

    plan = load_plan(str(path))

    assert plan.steps == [ClickStep("#go")]
    assert plan.start_url is None


def test_step_descriptions():
    assert ScrollStep(max_scrolls=3).describe() == "scroll (max 3)"
    assert ClickStep("#x").describe() == "click #x"
    assert WaitIdleStep(idle_ms=10).describe() == "wait_idle 10ms"


@pytest.mark.asyncio
async def test_network_quiet_after_idle_period():
    tap = _Tap()
    assert await wait_for_network_quiet(_Page(tap, bursts=3), tap, idle_ms=20, timeout_ms=2000, poll_ms=5)
    assert tap.captured_count == 3


@pytest.mark.asyncio
async def test_network_never_quiet_times_out():
    tap = _Tap()
    page = _Page(tap, bursts=10_000)
    assert not await wait_for_network_quiet(page, tap, idle_ms=50, timeout_ms=100, poll_ms=5)
