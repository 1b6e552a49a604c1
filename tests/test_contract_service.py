"""ContractService against a mocked Web3 instance."""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import BadFunctionCallOutput

from agent.contract_service import (
    ContractService,
    MissingSignerError,
    PollNotEndedError,
    PollNotFoundError,
    TransactionFailedError,
)
from settings import settings
from tests.conftest import END, POLL, START

SENDER = "0x" + "99" * 20
YES_TOKEN = "0x" + "01" * 20
NO_TOKEN = "0x" + "02" * 20


@pytest.fixture
def w3():
    w3 = MagicMock()
    contract = MagicMock()
    w3.eth.contract.return_value = contract
    w3.eth.account.from_key.return_value.address = SENDER
    w3.eth.get_code.return_value = b"\x60\x80"
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = b"\xcd" * 32
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 12, "gasUsed": 51_000}

    functions = contract.functions
    functions.getPollInfo.return_value.call.return_value = (END, YES_TOKEN, NO_TOKEN, 10**18, False, False)
    functions.getPollDetails.return_value.call.return_value = (True, "Resolves Yes if any rain is recorded.")
    return w3


@pytest.fixture
def functions(w3):
    return w3.eth.contract.return_value.functions


def make_service(w3, indexer=None, **overrides):
    service_settings = settings.model_copy(update={"PRIVATE_KEY": None, "INDEXER_URL": "", **overrides})
    return ContractService(service_settings, w3=w3, indexer=indexer)


def signing_service(w3):
    return make_service(w3, PRIVATE_KEY="0x" + "11" * 32)


async def test_get_poll_count(w3, functions):
    functions.getPollCount.return_value.call.return_value = 5

    assert await make_service(w3).get_poll_count() == 5


async def test_get_new_polls_reads_each_index(w3, functions):
    other = "0x" + "cd" * 20
    functions.getPollAt.return_value.call.side_effect = [POLL, other]

    assert await make_service(w3).get_new_polls(3, 5) == [POLL, other]
    assert [call.args for call in functions.getPollAt.call_args_list] == [(3,), (4,)]


async def test_get_poll_info(w3):
    info = await make_service(w3).get_poll_info(POLL)

    assert info.end_timestamp == END
    assert info.yes_token == YES_TOKEN
    assert info.total_staked == 10**18
    assert info.is_resolved is False


async def test_get_epoch_info(w3, functions):
    functions.getEpochInfo.return_value.call.return_value = (START, START + 86_400, 3657, True, 42)

    service = make_service(w3)
    info = await service.get_epoch_info(POLL, 1)

    assert info.is_distributed is True
    assert info.total_distribution == 3657
    assert await service.get_epoch_participant_count(POLL, 1) == 42
    functions.getEpochInfo.assert_called_with(1)


async def test_poll_details_from_indexer(w3):
    indexer = AsyncMock()
    indexer.get_poll_created.return_value = {
        "blockTimestamp": str(START),
        "creator": SENDER,
        "pollAddress": POLL,
        "avatar": None,
        "question": "Will it rain in Lisbon tomorrow?",
        "description": "",
        "yesToken": YES_TOKEN,
        "noToken": NO_TOKEN,
    }

    details = await make_service(w3, indexer=indexer).get_poll_details(POLL)

    assert details.question == "Will it rain in Lisbon tomorrow?"
    assert details.start_date == START
    assert details.end_date == END
    assert details.creator == SENDER
    assert details.pool_size == 10**18


async def test_poll_missing_from_indexer(w3):
    indexer = AsyncMock()
    indexer.get_poll_created.return_value = None

    with pytest.raises(PollNotFoundError):
        await make_service(w3, indexer=indexer).get_poll_details(POLL)


async def test_poll_details_without_indexer(w3):
    details = await make_service(w3).get_poll_details(POLL)

    assert details.description == "Resolves Yes if any rain is recorded."
    assert details.end_date == END
    assert details.start_date == END - settings.POLL_DURATION_FALLBACK_DAYS * 86_400


async def test_unknown_poll_without_indexer(w3, functions):
    functions.getPollDetails.return_value.call.return_value = (False, "")

    with pytest.raises(PollNotFoundError):
        await make_service(w3).get_poll_details(POLL)


async def test_address_without_code_is_not_a_poll(w3, functions):
    w3.eth.get_code.return_value = b""

    with pytest.raises(PollNotFoundError):
        await make_service(w3).get_poll_details(POLL)

    functions.getPollInfo.assert_not_called()


async def test_undecodable_poll_info_is_not_a_poll(w3, functions):
    functions.getPollInfo.return_value.call.side_effect = BadFunctionCallOutput("empty return data")

    with pytest.raises(PollNotFoundError):
        await make_service(w3).get_poll_info(POLL)


async def test_unknown_poll_on_a_real_chain(tester_w3):
    service = make_service(tester_w3)
    unknown = "0x" + "12" * 20

    with pytest.raises(PollNotFoundError):
        await service.get_poll_details(unknown)

    with pytest.raises(PollNotFoundError):
        await service.get_poll_info(unknown)


async def test_get_current_epoch(w3, functions):
    functions.currentEpoch.return_value.call.return_value = 3

    assert await make_service(w3).get_current_epoch(POLL) == 3


async def test_writes_require_private_key(w3):
    with pytest.raises(MissingSignerError):
        await make_service(w3).distribute_epoch_rewards(POLL, 1)


async def test_distribute_epoch_rewards_sends_transaction(w3, functions):
    service = signing_service(w3)
    function = functions.distributeEpochRewards.return_value
    function.build_transaction.return_value = {"to": POLL}

    tx_hash = await service.distribute_epoch_rewards(POLL, 2, offset=100, batch_size=100)

    assert tx_hash == "0x" + "cd" * 32
    functions.distributeEpochRewards.assert_called_once_with(2)
    function.call.assert_called_once_with({"from": SENDER})
    function.build_transaction.assert_called_once_with({
        "from": SENDER,
        "nonce": 7,
        "gas": settings.TX_GAS_LIMIT,
        "chainId": settings.CHAIN_ID,
    })
    w3.eth.get_transaction_count.assert_called_once_with(SENDER, "pending")
    w3.eth.account.sign_transaction.assert_called_once()
    w3.eth.wait_for_transaction_receipt.assert_called_once_with(tx_hash, timeout=settings.TX_RECEIPT_TIMEOUT)


async def test_reverted_transaction_raises(w3):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 12, "gasUsed": 51_000}

    with pytest.raises(TransactionFailedError):
        await signing_service(w3).distribute_epoch_rewards(POLL, 1)


async def test_failed_simulation_sends_nothing(w3, functions):
    functions.distributeEpochRewards.return_value.call.side_effect = ValueError("execution reverted")

    with pytest.raises(ValueError):
        await signing_service(w3).distribute_epoch_rewards(POLL, 1)

    w3.eth.send_raw_transaction.assert_not_called()


async def test_resolve_poll(w3, functions):
    tx_hash = await signing_service(w3).resolve_poll(POLL, True)

    assert tx_hash == "0x" + "cd" * 32
    functions.resolvePoll.assert_called_once_with(True)


async def test_resolve_poll_before_end(w3, functions):
    future = int(time.time()) + 3_600
    functions.getPollInfo.return_value.call.return_value = (future, YES_TOKEN, NO_TOKEN, 0, False, False)

    with pytest.raises(PollNotEndedError):
        await signing_service(w3).resolve_poll(POLL, False)

    functions.resolvePoll.assert_not_called()
