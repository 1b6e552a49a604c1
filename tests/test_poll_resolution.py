"""Poll resolution job."""

from unittest.mock import AsyncMock

import pytest

from agent.contract_service import PollInfo
from agent.resolution_service import Resolution, ResolutionError
from core.tasks import poll_resolution
from core.tasks.poll_resolution import PollResolver, resolution_job_key
from settings import settings
from tests.conftest import END, POLL, START

QUESTION = "Will it rain in Lisbon tomorrow?"


@pytest.fixture
def task(monkeypatch, make_task):
    fake = make_task("retry-resolve")
    monkeypatch.setattr(poll_resolution, "resolve_poll", fake)
    return fake


@pytest.fixture
def resolution_service():
    service = AsyncMock()
    service.resolve.return_value = Resolution(
        winning_position=True,
        confidence=0.85,
        sources=["https://example.com/weather"],
        reasoning="Rain was recorded."
    )
    return service


def test_job_key():
    assert resolution_job_key(POLL) == f"resolve-{POLL}"


async def test_resolves_ended_poll(contracts, resolution_service, task):
    resolver = PollResolver(contracts, resolution_service, clock=lambda: END + 5)

    result = await resolver.resolve(POLL, QUESTION, START)

    assert result["status"] == "resolved"
    assert result["tx_hash"] == "0x" + "ef" * 32
    assert result["resolution"]["winning_position"] is True
    assert result["resolution"]["confidence"] == 0.85
    resolution_service.resolve.assert_awaited_once_with(QUESTION, START)
    contracts.resolve_poll.assert_awaited_once_with(POLL, True)
    task.apply_async.assert_not_called()


async def test_already_resolved_poll(contracts, resolution_service, task):
    contracts.get_poll_info.return_value = PollInfo(
        end_timestamp=END,
        yes_token="0x" + "01" * 20,
        no_token="0x" + "02" * 20,
        total_staked=0,
        is_resolved=True,
        winning_position=False,
    )

    result = await PollResolver(contracts, resolution_service, clock=lambda: END + 5).resolve(POLL, QUESTION)

    assert result == {"status": "already_resolved"}
    resolution_service.resolve.assert_not_called()
    contracts.resolve_poll.assert_not_called()


async def test_early_job_reschedules_itself(contracts, resolution_service, task):
    now = END - 120

    result = await PollResolver(contracts, resolution_service, clock=lambda: now).resolve(POLL, QUESTION, START)

    assert result == {"status": "waiting", "remaining": 120}
    task.apply_async.assert_called_once_with(
        kwargs={"poll_address": POLL, "question": QUESTION, "start_date": START},
        countdown=120
    )
    resolution_service.resolve.assert_not_called()


async def test_long_wait_is_split_into_hops(contracts, resolution_service, task):
    await PollResolver(contracts, resolution_service, clock=lambda: START).resolve(POLL, QUESTION, START)

    assert task.apply_async.call_args.kwargs["countdown"] == settings.MAX_COUNTDOWN_SECONDS


async def test_unusable_analysis_does_not_resolve(contracts, resolution_service, task):
    resolution_service.resolve.side_effect = ResolutionError("no answer")

    with pytest.raises(ResolutionError):
        await PollResolver(contracts, resolution_service, clock=lambda: END + 5).resolve(POLL, QUESTION)

    contracts.resolve_poll.assert_not_called()


def test_task_reraises_for_retry(monkeypatch):
    task = poll_resolution.resolve_poll
    monkeypatch.setattr(poll_resolution, "run_resolution", AsyncMock(side_effect=RuntimeError("llm down")))

    with pytest.raises(RuntimeError):
        task.run(POLL, QUESTION)
