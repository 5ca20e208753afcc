# =============================================================================
# Unit Tests — Services (pool, budget, pricing, streams, swarm payloads)
# =============================================================================
#
# Everything runs in-process: no database, no HTTP, no API keys.
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from jobagents.agents.errors import BudgetExceededError
from jobagents.config import Settings, get_settings, settings
from jobagents.db.models import TokenUsageRecord, UserBudget
from jobagents.models.domain import JobInfo
from jobagents.services.budget import (
    BudgetGuard,
    InMemoryBudgetStore,
    SqlBudgetStore,
    UsageRecord,
    current_period_start,
    evaluate_budget,
    get_provider_from_model,
)
from jobagents.services.llm import (
    AnthropicProvider,
    GenerationStream,
    LLMResponse,
    OpenAICompatibleProvider,
    _parse_provider_id,
    create_provider_from_id,
)
from jobagents.services.pool import ClientPool
from jobagents.services.pricing import estimate_cost_cents, get_pricing
from jobagents.services.swarm import (
    SwarmUnavailableError,
    build_batch_task,
    parse_swarm_results,
)
from jobagents.services.tracing import LoggingTracer, NoopTracer, create_tracer


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _usage(user_id: str = "u1", cost: float = 1.0) -> UsageRecord:
    return UsageRecord(
        user_id=user_id, model="claude-3-haiku-20240307", provider="anthropic",
        prompt_tokens=10, completion_tokens=5, total_tokens=15, cost_cents=cost,
    )


# ---------------------------------------------------------------------------
# Test: Client pool
# ---------------------------------------------------------------------------


class FakeClient:
    def __init__(self, n: int) -> None:
        self.n = n
        self.closed = False


def _pool(max_size: int = 2, ttl_seconds: float = 300.0, clock=None):
    created: list[FakeClient] = []

    async def factory() -> FakeClient:
        client = FakeClient(len(created))
        created.append(client)
        return client

    async def closer(client: FakeClient) -> None:
        client.closed = True

    kwargs = {"clock": clock} if clock else {}
    pool = ClientPool(factory, max_size=max_size, ttl_seconds=ttl_seconds, closer=closer, **kwargs)
    return pool, created


class TestClientPool:
    def test_released_client_is_reused(self):
        async def scenario():
            pool, created = _pool()
            first = await pool.acquire()
            await pool.release(first)
            second = await pool.acquire()
            return first, second, created

        first, second, created = _run(scenario())
        assert first is second
        assert len(created) == 1

    def test_max_size_is_respected(self):
        async def scenario():
            pool, created = _pool(max_size=2)
            a = await pool.acquire()
            await pool.acquire()
            waiter = asyncio.create_task(pool.acquire())
            await asyncio.sleep(0.01)
            blocked = not waiter.done()
            await pool.release(a)
            third = await asyncio.wait_for(waiter, timeout=1)
            return blocked, third is a, len(created), pool.size

        blocked, reused, created, size = _run(scenario())
        assert blocked
        assert reused
        assert created == 2
        assert size == 2

    def test_lease_releases_on_error(self):
        async def scenario():
            pool, _ = _pool(max_size=1)
            with pytest.raises(RuntimeError):
                async with pool.lease():
                    raise RuntimeError("request failed")
            return pool.idle_count, pool.in_use_count

        assert _run(scenario()) == (1, 0)

    def test_discard_frees_slot_and_closes(self):
        async def scenario():
            pool, created = _pool(max_size=1)
            broken = await pool.acquire()
            await pool.discard(broken)
            fresh = await pool.acquire()
            return broken, fresh, created

        broken, fresh, created = _run(scenario())
        assert broken.closed
        assert fresh is not broken
        assert len(created) == 2

    def test_prune_closes_expired_idle_clients(self):
        now = [0.0]

        async def scenario():
            pool, created = _pool(ttl_seconds=10, clock=lambda: now[0])
            client = await pool.acquire()
            await pool.release(client)
            now[0] = 5.0
            kept = await pool.prune()
            now[0] = 20.0
            pruned = await pool.prune()
            return kept, pruned, client, pool.size

        kept, pruned, client, size = _run(scenario())
        assert kept == 0
        assert pruned == 1
        assert client.closed
        assert size == 0

    def test_release_of_foreign_client(self):
        async def scenario():
            pool, _ = _pool()
            await pool.release(FakeClient(99))

        with pytest.raises(ValueError):
            _run(scenario())

    def test_zero_size_rejected(self):
        with pytest.raises(ValueError):
            _pool(max_size=0)


# ---------------------------------------------------------------------------
# Test: Budget
# ---------------------------------------------------------------------------


def _fake_session(existing):
    session = MagicMock()
    session.get = AsyncMock(return_value=existing)
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


class _SessionFactory:
    """Stands in for async_sessionmaker: calling it yields the given session."""

    def __init__(self, session) -> None:
        self.session = session

    def __call__(self):
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc_info):
        return False


class TestEvaluateBudget:
    def test_allowed(self):
        check = evaluate_budget(used_cents=2500, budget_cents=10_000)
        assert check.allowed
        assert check.remaining_cents == 7500
        assert check.usage_percent == 25.0
        assert check.message is None

    def test_exhausted(self):
        check = evaluate_budget(used_cents=10_000, budget_cents=10_000)
        assert not check.allowed
        assert check.message == "Monthly budget exceeded"

    def test_zero_budget(self):
        check = evaluate_budget(used_cents=0, budget_cents=0)
        assert not check.allowed
        assert check.usage_percent == 100.0


class TestBudgetGuard:
    def test_ensure_raises_on_denial(self):
        store = InMemoryBudgetStore(default_budget_cents=5)
        guard = BudgetGuard(store)
        _run(guard.record(_usage(cost=5)))

        with pytest.raises(BudgetExceededError) as info:
            _run(guard.ensure("u1"))
        assert info.value.budget_check.remaining_cents == 0

    def test_usage_accumulates_per_user(self):
        store = InMemoryBudgetStore(default_budget_cents=100)
        guard = BudgetGuard(store)
        _run(guard.record(_usage("u1", 30)))
        _run(guard.record(_usage("u1", 20)))
        _run(guard.record(_usage("u2", 99)))

        check = _run(guard.ensure("u1"))
        assert check.remaining_cents == 50
        assert store.used_cents("u2") == 99
        assert len(store.ledger) == 3

    def test_record_swallows_store_errors(self):
        class Broken(InMemoryBudgetStore):
            async def record(self, usage):
                raise ConnectionError("db down")

        _run(BudgetGuard(Broken()).record(_usage()))

    def test_guard_over_sql_store(self):
        session = _fake_session(existing=None)
        store = SqlBudgetStore(_SessionFactory(session), default_budget_cents=500)

        check = _run(BudgetGuard(store).ensure("u1"))

        assert check.allowed
        assert check.remaining_cents == 500
        created = session.add.call_args.args[0]
        assert isinstance(created, UserBudget)
        assert created.monthly_budget_cents == 500
        session.commit.assert_awaited_once()

    def test_sql_store_resets_stale_period(self):
        stale = UserBudget(
            user_id="u1",
            monthly_budget_cents=100,
            current_period_start=datetime(2020, 1, 1, tzinfo=timezone.utc),
            current_period_usage_cents=100.0,
        )
        store = SqlBudgetStore(_SessionFactory(_fake_session(existing=stale)))

        check = _run(store.check("u1"))

        assert check.allowed
        assert stale.current_period_usage_cents == 0.0

    def test_sql_store_records_ledger_row(self):
        session = _fake_session(existing=None)
        store = SqlBudgetStore(_SessionFactory(session))

        _run(store.record(_usage(cost=2.5)))

        row = session.add.call_args.args[0]
        assert isinstance(row, TokenUsageRecord)
        assert row.cost_cents == 2.5
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    def test_sql_session_rolls_back_on_error(self):
        session = _fake_session(existing=None)
        session.execute.side_effect = ConnectionError("db down")
        store = SqlBudgetStore(_SessionFactory(session))

        with pytest.raises(ConnectionError):
            _run(store.record(_usage()))
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    def test_period_start(self):
        start = current_period_start(datetime(2025, 3, 17, 15, 4, tzinfo=timezone.utc))
        assert start == datetime(2025, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("model, provider", [
        ("claude-3-haiku-20240307", "anthropic"),
        ("gpt-4o", "openai"),
        ("gemini-1.5-flash", "google"),
        ("deepseek-chat", "unknown"),
    ])
    def test_provider_from_model(self, model, provider):
        assert get_provider_from_model(model) == provider


# ---------------------------------------------------------------------------
# Test: Pricing & provider ids
# ---------------------------------------------------------------------------


class TestPricing:
    def test_known_model(self):
        cost = estimate_cost_cents("anthropic", "claude-3-haiku-20240307", 1_000_000, 0)
        assert cost == pytest.approx(25.0)

    def test_output_tokens_priced_separately(self):
        cost = estimate_cost_cents("openai_compatible", "gpt-4o", 0, 1_000_000)
        assert cost == pytest.approx(1000.0)

    def test_unknown_model(self):
        assert estimate_cost_cents("anthropic", "claude-99", 10, 10) is None
        assert get_pricing("anthropic", "claude-99") is None

    def test_provider_type_matters(self):
        assert estimate_cost_cents("anthropic", "gpt-4o", 10, 10) is None


class TestParseProviderId:
    def test_simple(self):
        assert _parse_provider_id("anthropic/claude-sonnet-4-6") == (
            "anthropic", "claude-sonnet-4-6", None,
        )

    def test_with_base_url(self):
        assert _parse_provider_id(
            "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
        ) == ("openai_compatible", "deepseek-chat", "https://api.deepseek.com/v1")

    def test_missing_slash(self):
        with pytest.raises(ValueError, match="Invalid provider_id"):
            _parse_provider_id("claude")

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown provider type"):
            _parse_provider_id("cohere/command-r")


class TestProviderFactory:
    def test_anthropic_from_id(self):
        provider = create_provider_from_id(
            "anthropic/claude-3-haiku-20240307", api_key="sk-test",
        )
        assert isinstance(provider, AnthropicProvider)
        assert provider._model == "claude-3-haiku-20240307"

    def test_openai_compatible_with_base_url(self):
        provider = create_provider_from_id(
            "openai_compatible/deepseek-chat@https://api.deepseek.com/v1",
            api_key="sk-test",
        )
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.provider_type == "openai_compatible"
        assert provider._model == "deepseek-chat"

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings, "llm_api_key", None)
        monkeypatch.setattr(settings, "anthropic_api_key", "")
        with pytest.raises(ValueError, match="No Anthropic API key"):
            create_provider_from_id("anthropic/claude-3-haiku-20240307")


class TestSettings:
    def test_environment_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("BATCH_MIN_SCORE", "65")
        monkeypatch.setenv("TRACING_BACKEND", "logging")
        configured = Settings(_env_file=None)
        assert configured.batch_min_score == 65
        assert configured.tracing_backend == "logging"

    def test_cached_instance(self):
        assert get_settings() is get_settings()


# ---------------------------------------------------------------------------
# Test: Generation stream
# ---------------------------------------------------------------------------


def _source(*chunks, final=True):
    async def gen():
        for chunk in chunks:
            yield chunk
        if final:
            yield LLMResponse(
                content="".join(chunks), model="m", input_tokens=1, output_tokens=2,
            )

    return gen()


class TestGenerationStream:
    def test_chunks_then_result(self):
        async def scenario():
            stream = GenerationStream(_source("Hel", "lo"))
            chunks = [c async for c in stream]
            return chunks, await stream.result()

        chunks, response = _run(scenario())
        assert chunks == ["Hel", "lo"]
        assert response.content == "Hello"
        assert response.output_tokens == 2

    def test_result_drains_unstarted_stream(self):
        async def scenario():
            return await GenerationStream(_source("a", "b")).result()

        assert _run(scenario()).content == "ab"

    def test_cannot_restart(self):
        async def scenario():
            stream = GenerationStream(_source("a"))
            async for _ in stream:
                pass
            async for _ in stream:
                pass

        with pytest.raises(RuntimeError, match="restarted"):
            _run(scenario())

    def test_missing_final_response(self):
        async def scenario():
            stream = GenerationStream(_source("a", final=False))
            async for _ in stream:
                pass

        with pytest.raises(RuntimeError, match="final response"):
            _run(scenario())

    def test_result_without_final_response(self):
        async def scenario():
            return await GenerationStream(_source("a", final=False)).result()

        with pytest.raises(RuntimeError, match="final response"):
            _run(scenario())


# ---------------------------------------------------------------------------
# Test: Swarm payloads
# ---------------------------------------------------------------------------


class TestSwarmPayloads:
    def test_task_truncates_description(self, profile):
        job = JobInfo(id="j1", title="Dev", description="x" * 5000)
        task = build_batch_task([job], profile)

        assert task["type"] == "batch_job_matching"
        assert len(task["jobs"][0]["description"]) == 2000
        assert task["profile"]["skills"] == profile.skills

    def test_task_carries_no_threshold(self, profile):
        task = build_batch_task([JobInfo(id="j1", title="Dev")], profile)
        assert "minScore" not in task

    def test_results_for_unknown_jobs_are_dropped(self):
        payload = {
            "success": True,
            "results": [
                {"jobId": "j1", "matchScore": 81.6, "breakdown": {"skills": 90}},
                {"jobId": "zzz", "matchScore": 50},
            ],
        }
        matches = parse_swarm_results(payload, {"j1", "j2"})

        assert [m.job_id for m in matches] == ["j1"]
        assert matches[0].match_score == 82
        assert matches[0].breakdown == {
            "skills": 90, "experience": 0, "education": 0, "location": 0,
        }

    def test_failure_payload(self):
        with pytest.raises(SwarmUnavailableError, match="overloaded"):
            parse_swarm_results({"success": False, "error": "overloaded"}, {"j1"})


class TestTracerFactory:
    def test_backends(self):
        assert isinstance(create_tracer("noop"), NoopTracer)
        assert isinstance(create_tracer("logging"), LoggingTracer)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_tracer("langfuse")

    def test_logging_spans_share_trace_id(self):
        trace = LoggingTracer().trace("root", user_id="u1")
        child = trace.span("child")
        grandchild = child.generation("gen", model="m")
        assert child.trace_id == grandchild.trace_id == trace.trace_id
        assert grandchild.parent_id == child.id
        grandchild.end(level="ERROR", status_message="boom")
        assert grandchild.ended
