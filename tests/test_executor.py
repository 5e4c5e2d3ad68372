"""Tests for the browser pool and the parallel run executor."""

import asyncio
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from uiscout.budget import BudgetConfig
from uiscout.config import RunConfig
from uiscout.events import EventBus, EventType
from uiscout.executor import (
    BrowserPool,
    ParallelExplorer,
    RunResult,
    UnitResult,
    merge_unit_results,
    run_with_concurrency,
)
from uiscout.explorer import ExplorationResult, ExplorationStep, TerminationReason

from fakes import FakeBrowser, FakeElement, FakePage, small_site

START = "http://site.test/"


def _factory(pages, created=None):
    async def factory():
        browser = FakeBrowser(pages)
        if created is not None:
            created.append(browser)
        return browser

    return factory


class TestBrowserPool:
    """Test browser checkout and reuse."""

    @pytest.mark.asyncio
    async def test_browsers_are_reused(self):
        created = []
        pool = BrowserPool(_factory(small_site(), created), size=2)
        first = await pool.acquire()
        pool.release(first)
        second = await pool.acquire()
        assert second is first
        assert pool.created_count == 1
        assert pool.active_count == 1

    @pytest.mark.asyncio
    async def test_acquire_waits_when_exhausted(self):
        pool = BrowserPool(_factory(small_site()), size=1)
        browser = await pool.acquire()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pool.acquire(), timeout=0.05)
        pool.release(browser)
        assert await pool.acquire() is browser

    @pytest.mark.asyncio
    async def test_session_releases_on_error(self):
        pool = BrowserPool(_factory(small_site()), size=1)
        with pytest.raises(RuntimeError):
            async with pool.session():
                raise RuntimeError("boom")
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_factory_failure_frees_slot(self):
        async def broken():
            raise RuntimeError("launch failed")

        pool = BrowserPool(broken, size=1)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await pool.acquire()
        assert pool.created_count == 0

    @pytest.mark.asyncio
    async def test_close_all(self):
        created = []
        pool = BrowserPool(_factory(small_site(), created), size=2)
        a = await pool.acquire()
        b = await pool.acquire()
        pool.release(a)
        pool.release(b)
        await pool.close_all()
        assert all(browser.closed for browser in created)
        assert pool.created_count == 0

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            BrowserPool(_factory({}), size=0)


class TestRunWithConcurrency:
    """Test the bounded worker loop."""

    @pytest.mark.asyncio
    async def test_results_in_item_order_and_limit_respected(self):
        running = {"now": 0, "peak": 0}

        async def work(index, delay):
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
            await asyncio.sleep(delay)
            running["now"] -= 1
            return index * 10

        results = await run_with_concurrency([0.03, 0.01, 0.02, 0.0, 0.01], 2, work)
        assert results == [0, 10, 20, 30, 40]
        assert running["peak"] == 2

    @pytest.mark.asyncio
    async def test_empty_items(self):
        async def work(index, item):
            return item

        assert await run_with_concurrency([], 3, work) == []

    @pytest.mark.asyncio
    async def test_limit_must_be_positive(self):
        async def work(index, item):
            return item

        with pytest.raises(ValueError):
            await run_with_concurrency([1], 0, work)


class TestParallelExplorer:
    """Test whole runs over fake browsers."""

    @pytest.mark.asyncio
    async def test_graph_mode_shares_graph_and_budget(self):
        created = []
        config = RunConfig(parallel_browsers=2, use_ai=False)
        runner = ParallelExplorer(config, browser_factory=_factory(small_site(), created))
        result = await runner.run([START, "http://site.test/pricing"])

        assert result.status == "completed"
        assert result.mode == "graph"
        assert [u.status for u in result.units] == ["tested", "tested"]
        assert result.graph.get_stats().total_nodes == 3
        assert result.budget_status is not None
        assert result.budget_status.steps_used == result.units[0].exploration.total_steps + result.units[1].exploration.total_steps

        indices = [s.index for s in result.steps]
        assert indices == sorted(indices)
        assert len(set(indices)) == len(indices)
        assert result.units[1].exploration.steps[0].index == 503
        assert len(created) == 2
        assert all(b.closed for b in created)

    @pytest.mark.asyncio
    async def test_pages_mode_budget_per_unit(self):
        config = RunConfig(mode="pages", steps_per_page=1, parallel_browsers=2, use_ai=False)
        runner = ParallelExplorer(config, browser_factory=_factory(small_site()))
        result = await runner.run([START, "http://site.test/about"])

        assert result.status == "completed"
        assert result.budget_status is None
        for unit in result.units:
            assert unit.exploration.termination_reason == TerminationReason.MAX_STEPS_REACHED
            assert unit.exploration.total_steps == 1
        assert result.units[1].exploration.steps[0].index == 4

    @pytest.mark.asyncio
    async def test_pages_mode_state_limit_per_unit(self):
        """States found by earlier pages do not count against later ones."""
        config = RunConfig(
            budget=BudgetConfig(max_unique_states=2), mode="pages", steps_per_page=5, parallel_browsers=1, use_ai=False
        )
        runner = ParallelExplorer(config, browser_factory=_factory(small_site()))
        result = await runner.run([START, "http://site.test/pricing"])

        assert result.units[0].exploration.termination_reason == TerminationReason.MAX_STATES_REACHED
        assert result.units[1].exploration.termination_reason == TerminationReason.EXPLORATION_COMPLETE

    @pytest.mark.asyncio
    async def test_unreachable_page_skipped(self):
        config = RunConfig(parallel_browsers=1, use_ai=False)
        runner = ParallelExplorer(config, browser_factory=_factory(small_site()))
        result = await runner.run(["http://missing.test/", START])

        assert result.status == "completed"
        assert result.units[0].status == "skipped"
        assert "ERR_NAME_NOT_RESOLVED" in result.units[0].error
        assert result.units[1].status == "tested"
        assert result.page_progress == {"total": 2, "tested": 1, "skipped": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_blocking_error_skips_queued_units(self):
        pages = {
            START: FakePage(elements=[FakeElement("#crash", text="Crash", error="Target closed")]),
            "http://site.test/next": FakePage(title="Next"),
        }
        config = RunConfig(parallel_browsers=1, use_ai=False)
        runner = ParallelExplorer(config, browser_factory=_factory(pages))
        result = await runner.run([START, "http://site.test/next"])

        assert result.status == "blocked"
        assert result.blocking_error == "Target closed"
        assert result.units[0].status == "failed"
        assert result.units[0].blocked
        assert result.units[1].status == "skipped"
        assert result.units[1].exploration is None
        assert "BLOCKED during exploration: Target closed" in result.summary()

    @pytest.mark.asyncio
    async def test_browser_launch_crash_blocks_run(self):
        async def crashing():
            raise RuntimeError("Browser crashed on launch")

        config = RunConfig(parallel_browsers=1, use_ai=False)
        result = await ParallelExplorer(config, browser_factory=crashing).run([START, "http://site.test/about"])
        assert result.status == "blocked"
        assert result.units[0].status == "failed"
        assert result.units[1].status == "skipped"
        assert result.errors[0]["stepIndex"] is None

    @pytest.mark.asyncio
    async def test_caller_pool_not_closed(self):
        created = []
        pool = BrowserPool(_factory(small_site(), created), size=1)
        runner = ParallelExplorer(RunConfig(use_ai=False), pool=pool)
        await runner.run([START])
        assert created and not created[0].closed
        await pool.close_all()

    @pytest.mark.asyncio
    async def test_events(self):
        bus = EventBus()
        config = RunConfig(mode="pages", steps_per_page=1, parallel_browsers=2, use_ai=False)
        runner = ParallelExplorer(config, browser_factory=_factory(small_site()), events=bus)
        await runner.run([START, "http://site.test/about"])

        types = [e.type for e in bus.history()]
        assert types[0] == EventType.PHASE_START
        assert types.count(EventType.PAGE_START) == 2
        assert types.count(EventType.PAGE_COMPLETE) == 2
        assert types[-2:] == [EventType.PHASE_COMPLETE, EventType.COMPLETE]

    @pytest.mark.asyncio
    async def test_requires_urls(self):
        runner = ParallelExplorer(RunConfig(use_ai=False), browser_factory=_factory(small_site()))
        with pytest.raises(ValueError):
            await runner.run([])

    def test_requires_pool_or_factory(self):
        with pytest.raises(ValueError):
            ParallelExplorer(RunConfig())

    def test_decider_ignored_without_ai(self):
        runner = ParallelExplorer(RunConfig(use_ai=False), browser_factory=_factory({}), decider=object())
        assert runner.decider is None


class TestMergeAndSave:
    """Test result merging and serialization."""

    def _exploration(self, indices):
        steps = [ExplorationStep(i, f"step {i}", START, True) for i in indices]
        errors = [{"stepIndex": i, "error": "Timeout", "kind": "skippable"} for i in indices[:1]]
        return ExplorationResult(START, TerminationReason.EXPLORATION_COMPLETE, steps=steps, errors=errors)

    def test_merge_orders_by_step_index(self):
        units = [
            UnitResult(START, 1, "tested", exploration=self._exploration([8, 9])),
            UnitResult(START, 0, "tested", exploration=self._exploration([0, 1])),
            UnitResult("http://site.test/x", 2, "failed", error="launch failed"),
        ]
        steps, errors = merge_unit_results(units)
        assert [s.index for s in steps] == [0, 1, 8, 9]
        assert [e["stepIndex"] for e in errors] == [0, 8, None]
        assert errors[-1]["url"] == "http://site.test/x"

    def test_skipped_unit_without_exploration_adds_no_error(self):
        steps, errors = merge_unit_results([UnitResult(START, 0, "skipped", error="Run blocked")])
        assert steps == [] and errors == []

    def test_run_result_save(self, tmp_path):
        units = [UnitResult(START, 0, "tested", exploration=self._exploration([0]))]
        steps, errors = merge_unit_results(units)
        result = RunResult(status="completed", mode="graph", units=units, steps=steps, errors=errors)

        result.save(str(tmp_path / "run.json"))
        data = json.loads((tmp_path / "run.json").read_text())
        assert data["status"] == "completed"
        assert data["pageProgress"]["tested"] == 1
        assert data["steps"][0]["index"] == 0

        result.save(str(tmp_path / "run.txt"))
        assert "RUN RESULT" in (tmp_path / "run.txt").read_text()
