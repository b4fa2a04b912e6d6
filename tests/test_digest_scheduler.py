"""Tests for digest passes and the digest timer."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import BASE_TIME, FakeLLM
from digestbot.errors import FatalStoreError, InvalidResponseError, ModelClientError, RetryableError
from digestbot.summarization.digest_scheduler import DigestScheduler, SchedulerState


def make_scheduler(llm, store, budget_chars=10_000):
    return DigestScheduler(llm, store, budget_chars=budget_chars, max_response_tokens=512)


class TestRunDigestPass:
    @pytest.mark.asyncio
    async def test_no_unlinked_summaries_is_noop(self, fake_llm, store):
        scheduler = make_scheduler(fake_llm, store)

        assert await scheduler.run_digest_pass() is None
        assert store.list_all_digests() == []
        assert fake_llm.call_count == 0

    @pytest.mark.asyncio
    async def test_three_summaries_produce_one_linked_digest(self, fake_llm, store):
        ids = [store.insert_summary(f"summary {i}", BASE_TIME + timedelta(minutes=i)) for i in range(3)]
        scheduler = make_scheduler(fake_llm, store)

        digest = await scheduler.run_digest_pass()

        assert digest is not None
        assert [s.id for s in digest.summaries] == ids
        assert all(store.get_summary(i).daily_digest_id == digest.id for i in ids)
        assert len(store.list_all_digests()) == 1
        assert fake_llm.max_tokens == [512]

        assert await scheduler.run_digest_pass() is None
        assert len(store.list_all_digests()) == 1

    @pytest.mark.asyncio
    async def test_prompt_orders_by_timestamp_then_id(self, fake_llm, store):
        store.insert_summary("late", BASE_TIME + timedelta(hours=1))
        store.insert_summary("early-a", BASE_TIME)
        store.insert_summary("early-b", BASE_TIME)
        scheduler = make_scheduler(fake_llm, store)

        await scheduler.run_digest_pass()

        text = fake_llm.last_prompt_text
        assert text.index("early-a") < text.index("early-b") < text.index("late")

    @pytest.mark.asyncio
    async def test_summaries_created_during_pass_stay_unlinked(self, store):
        before = store.insert_summary("before", BASE_TIME)
        llm = FakeLLM(responses=["digest"])
        created = []
        llm.on_call = lambda: created.append(store.insert_summary("during", BASE_TIME + timedelta(minutes=1)))
        scheduler = make_scheduler(llm, store)

        digest = await scheduler.run_digest_pass()

        assert [s.id for s in digest.summaries] == [before]
        assert [s.id for s in store.list_unlinked_summaries()] == created

    @pytest.mark.asyncio
    async def test_model_failure_is_retryable_and_writes_nothing(self, store):
        store.insert_summary("pending")
        scheduler = make_scheduler(FakeLLM(responses=[ModelClientError("429")]), store)

        with pytest.raises(RetryableError):
            await scheduler.run_digest_pass()

        assert store.list_all_digests() == []
        assert len(store.list_unlinked_summaries()) == 1
        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_empty_response_is_invalid(self, store):
        store.insert_summary("pending")
        scheduler = make_scheduler(FakeLLM(responses=[""]), store)

        with pytest.raises(InvalidResponseError):
            await scheduler.run_digest_pass()
        assert store.list_all_digests() == []

    @pytest.mark.asyncio
    async def test_link_failure_is_fatal_and_reports_orphan(self, fake_llm, store):
        sid = store.insert_summary("pending")
        scheduler = make_scheduler(fake_llm, store)

        with patch.object(store, "link_summaries_to_digest", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(FatalStoreError) as excinfo:
                await scheduler.run_digest_pass()

        err = excinfo.value
        assert err.digest_id == store.list_all_digests()[0].id
        assert err.summary_ids == [sid]
        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_digest_insert_failure_is_fatal(self, fake_llm, store):
        store.insert_summary("pending")
        scheduler = make_scheduler(fake_llm, store)

        with patch.object(store, "insert_digest", side_effect=sqlite3.OperationalError("readonly")):
            with pytest.raises(FatalStoreError) as excinfo:
                await scheduler.run_digest_pass()

        assert excinfo.value.digest_id is None
        assert store.get_summary(1).daily_digest_id is None

    @pytest.mark.asyncio
    async def test_state_is_running_only_during_pass(self, store):
        store.insert_summary("pending")
        llm = FakeLLM()
        llm.gate = asyncio.Event()
        scheduler = make_scheduler(llm, store)

        task = asyncio.create_task(scheduler.run_digest_pass())
        while llm.call_count == 0:
            await asyncio.sleep(0.01)
        assert scheduler.state is SchedulerState.RUNNING

        # An overlapping pass is skipped rather than run twice
        assert await scheduler.run_digest_pass() is None
        assert llm.call_count == 1

        llm.gate.set()
        digest = await task
        assert digest is not None
        assert scheduler.state is SchedulerState.IDLE


class TestTimer:
    @pytest.mark.asyncio
    async def test_first_tick_waits_full_interval(self, fake_llm, store):
        store.insert_summary("pending")
        scheduler = make_scheduler(fake_llm, store)
        stop = asyncio.Event()

        task = asyncio.create_task(scheduler.run(0.2, stop))
        await asyncio.sleep(0.05)
        assert fake_llm.call_count == 0

        await asyncio.sleep(0.3)
        assert fake_llm.call_count == 1
        assert len(store.list_all_digests()) == 1

        stop.set()
        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_failed_pass_does_not_stop_timer(self, store):
        store.insert_summary("pending")
        llm = FakeLLM(responses=[ModelClientError("down"), "recovered digest"])
        scheduler = make_scheduler(llm, store)
        stop = asyncio.Event()

        task = asyncio.create_task(scheduler.run(0.05, stop))
        for _ in range(100):
            if store.list_all_digests():
                break
            await asyncio.sleep(0.02)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        digests = store.list_all_digests()
        assert [d.text for d in digests] == ["recovered digest"]
        assert llm.call_count == 2

    @pytest.mark.asyncio
    async def test_stop_event_ends_timer_promptly(self, fake_llm, store):
        scheduler = make_scheduler(fake_llm, store)
        stop = asyncio.Event()

        task = asyncio.create_task(scheduler.run(3600, stop))
        await asyncio.sleep(0)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        assert fake_llm.call_count == 0
