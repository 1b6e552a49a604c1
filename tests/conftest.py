"""
Shared fixtures: fake scheduler state, fake contract service and fake tasks.

No broker, node or network is touched by the tests.
"""

import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("LOG_FILE_PATH", os.path.join(tempfile.gettempdir(), "pander_agent_test.log"))

from agent.contract_service import EpochInfo, PollDetails, PollInfo

POLL = "0x" + "ab" * 20
START = 1_700_000_000
END = START + 4 * 86_400


@pytest.fixture
def fake_state():
    state = MagicMock()
    state.claim_job.return_value = True
    state.get_last_processed_count.return_value = 0
    state.is_monitoring_enabled.return_value = True
    state.get_pending_monitor_job.return_value = None
    state.get_unscheduled_polls.return_value = []
    return state


@pytest.fixture
def make_task():
    def _make(task_id="task-1"):
        task = MagicMock()
        task.apply_async.return_value.id = task_id
        return task
    return _make


@pytest.fixture
def poll_details():
    return PollDetails(
        poll_address=POLL,
        question="Will it rain in Lisbon tomorrow?",
        description="Resolves Yes if any rain is recorded.",
        start_date=START,
        end_date=END,
        pool_size=10**18,
    )


@pytest.fixture
def contracts(poll_details):
    service = AsyncMock()
    service.get_poll_details.return_value = poll_details
    service.get_poll_info.return_value = PollInfo(
        end_timestamp=END,
        yes_token="0x" + "01" * 20,
        no_token="0x" + "02" * 20,
        total_staked=10**18,
        is_resolved=False,
        winning_position=False,
    )
    service.get_epoch_info.return_value = EpochInfo(
        start_time=START,
        end_time=START + 86_400,
        total_distribution=3657,
        is_distributed=False,
        num_stakers=250,
    )
    service.distribute_epoch_rewards.return_value = "0x" + "cd" * 32
    service.resolve_poll.return_value = "0x" + "ef" * 32
    return service


@pytest.fixture
def tester_w3():
    """In-memory chain with no contracts deployed"""
    pytest.importorskip("eth_tester")
    from web3 import EthereumTesterProvider, Web3

    return Web3(EthereumTesterProvider())
