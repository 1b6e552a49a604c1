# agent/contract_service.py
import asyncio
import time
from loguru import logger
from pydantic import BaseModel
from typing import List, Optional
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput
from web3.middleware import ExtraDataToPOAMiddleware

from agent.contracts import CAPY_CORE_ABI, CAPY_POLL_ABI
from agent.indexer_client import PanderIndexerClient


class PollNotFoundError(Exception):
    """The poll is unknown to the indexer or the CapyCore factory."""


class PollNotEndedError(Exception):
    """A poll was about to be resolved before its end time."""


class TransactionFailedError(Exception):
    """A transaction was mined but reverted."""


class MissingSignerError(Exception):
    """A contract write was requested without an agent private key."""


class PollInfo(BaseModel):
    end_timestamp: int
    yes_token: str
    no_token: str
    total_staked: int
    is_resolved: bool
    winning_position: bool


class EpochInfo(BaseModel):
    start_time: int
    end_time: int
    total_distribution: int
    is_distributed: bool
    num_stakers: int


class PollDetails(BaseModel):
    poll_address: str
    question: str = ""
    description: str = ""
    avatar: Optional[str] = None
    creator: Optional[str] = None
    yes_token: Optional[str] = None
    no_token: Optional[str] = None
    start_date: int
    end_date: int
    pool_size: int = 0
    is_resolved: bool = False
    winning_position: bool = False


class ContractService:
    """Reads and writes the CapyCore factory and its CapyPoll contracts."""

    def __init__(self, settings, w3: Optional[Web3] = None, indexer: Optional[PanderIndexerClient] = None):
        self.settings = settings

        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(settings.RPC_URL, request_kwargs={"timeout": settings.RPC_TIMEOUT}))
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = w3

        if indexer is None and settings.INDEXER_URL:
            indexer = PanderIndexerClient(settings.INDEXER_URL, timeout=settings.HTTP_TIMEOUT)
        self.indexer = indexer

        self.account = self.w3.eth.account.from_key(settings.PRIVATE_KEY) if settings.PRIVATE_KEY else None

        self.capy_core = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.CAPY_CORE_ADDRESS),
            abi=CAPY_CORE_ABI
        )
        self.log = logger.bind(component="ContractService")

    async def close(self):
        if self.indexer:
            await self.indexer.close()

    def poll_contract(self, poll_address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(poll_address), abi=CAPY_POLL_ABI)

    # ========== Reads ==========

    async def get_poll_count(self) -> int:
        try:
            count = int(self.capy_core.functions.getPollCount().call())
            self.log.info(f"Current poll count: {count}")
            return count
        except Exception as e:
            self.log.error(f"Failed to get poll count: {e}")
            raise

    async def get_new_polls(self, start_index: int, end_index: int) -> List[str]:
        self.log.info(f"Fetching polls from index {start_index} to {end_index}")

        polls = []
        for index in range(start_index, end_index):
            try:
                poll_address = self.capy_core.functions.getPollAt(index).call()
                self.log.info(f"Found poll at index {index}: {poll_address}")
                polls.append(poll_address)
            except Exception as e:
                self.log.error(f"Failed to get poll at index {index}: {e}")
                raise
        return polls

    async def get_poll_info(self, poll_address: str) -> PollInfo:
        try:
            raw = self.poll_contract(poll_address).functions.getPollInfo().call()
        except BadFunctionCallOutput as e:
            # Empty return data: no CapyPoll deployed at this address
            raise PollNotFoundError(f"No poll contract at {poll_address}") from e

        return PollInfo(
            end_timestamp=int(raw[0]),
            yes_token=raw[1],
            no_token=raw[2],
            total_staked=int(raw[3]),
            is_resolved=bool(raw[4]),
            winning_position=bool(raw[5])
        )

    async def get_current_epoch(self, poll_address: str) -> int:
        return int(self.poll_contract(poll_address).functions.currentEpoch().call())

    async def get_epoch_info(self, poll_address: str, epoch_number: int) -> EpochInfo:
        try:
            raw = self.poll_contract(poll_address).functions.getEpochInfo(epoch_number).call()
            return EpochInfo(
                start_time=int(raw[0]),
                end_time=int(raw[1]),
                total_distribution=int(raw[2]),
                is_distributed=bool(raw[3]),
                num_stakers=int(raw[4])
            )
        except Exception as e:
            self.log.error(f"Failed to get epoch info for poll {poll_address}, epoch {epoch_number}: {e}")
            raise

    async def get_epoch_participant_count(self, poll_address: str, epoch_number: int) -> int:
        epoch_info = await self.get_epoch_info(poll_address, epoch_number)
        return epoch_info.num_stakers

    async def get_poll_details(self, poll_address: str) -> PollDetails:
        """
        Merge the indexed PollCreated record with the poll's on-chain state

        Without an indexer the description comes from CapyCore and the start
        date is inferred from the end timestamp.
        """
        try:
            if not self.w3.eth.get_code(Web3.to_checksum_address(poll_address)):
                raise PollNotFoundError(f"No poll contract at {poll_address}")

            poll_info = await self.get_poll_info(poll_address)

            if self.indexer:
                record = await self.indexer.get_poll_created(poll_address)
                if record is None:
                    raise PollNotFoundError(f"Poll {poll_address} does not exist in the indexer")

                details = PollDetails(
                    poll_address=record.get("pollAddress") or poll_address,
                    question=record.get("question") or "",
                    description=record.get("description") or "",
                    avatar=record.get("avatar"),
                    creator=record.get("creator"),
                    yes_token=record.get("yesToken"),
                    no_token=record.get("noToken"),
                    start_date=int(record["blockTimestamp"]),
                    end_date=poll_info.end_timestamp,
                    pool_size=poll_info.total_staked,
                    is_resolved=poll_info.is_resolved,
                    winning_position=poll_info.winning_position
                )
            else:
                exists, description = self.capy_core.functions.getPollDetails(
                    Web3.to_checksum_address(poll_address)
                ).call()
                if not exists:
                    raise PollNotFoundError(f"Poll {poll_address} does not exist in CapyCore")

                fallback_duration = self.settings.POLL_DURATION_FALLBACK_DAYS * 24 * 60 * 60
                details = PollDetails(
                    poll_address=poll_address,
                    description=description,
                    yes_token=poll_info.yes_token,
                    no_token=poll_info.no_token,
                    start_date=poll_info.end_timestamp - fallback_duration,
                    end_date=poll_info.end_timestamp,
                    pool_size=poll_info.total_staked,
                    is_resolved=poll_info.is_resolved,
                    winning_position=poll_info.winning_position
                )

            self.log.info(f"Found poll details for {poll_address}: {details.question or details.description[:60]}")
            return details

        except Exception as e:
            self.log.error(f"Failed to get poll details for {poll_address}: {e}")
            raise

    # ========== Writes ==========

    async def distribute_epoch_rewards(
            self,
            poll_address: str,
            epoch_number: int,
            offset: int = 0,
            batch_size: int = 100
    ) -> str:
        """
        Settle the next slice of stakers for an epoch

        The poll contract keeps its own cursor over stakers; offset and
        batch_size only describe the slice this call is expected to cover.
        """
        try:
            self.log.info(
                f"Distributing rewards for poll {poll_address}, epoch {epoch_number}, "
                f"offset {offset}, batch size {batch_size}"
            )
            function = self.poll_contract(poll_address).functions.distributeEpochRewards(epoch_number)
            return await self._send_transaction(function)
        except Exception as e:
            self.log.error(f"Failed to distribute rewards for poll {poll_address}, epoch {epoch_number}: {e}")
            raise

    async def resolve_poll(self, poll_address: str, winning_position: bool) -> str:
        try:
            poll_info = await self.get_poll_info(poll_address)
            current_time = int(time.time())

            if poll_info.end_timestamp > current_time:
                raise PollNotEndedError(
                    f"Poll {poll_address} cannot be resolved yet. "
                    f"Current time: {current_time}, Poll end: {poll_info.end_timestamp}"
                )

            self.log.info(f"Resolving poll {poll_address} with winning position: {winning_position}")
            function = self.poll_contract(poll_address).functions.resolvePoll(winning_position)
            return await self._send_transaction(function)
        except Exception as e:
            self.log.error(f"Failed to resolve poll {poll_address}: {e}")
            raise

    async def _send_transaction(self, function) -> str:
        if self.account is None:
            raise MissingSignerError("PRIVATE_KEY is not configured, cannot send transactions")

        sender = self.account.address

        # Simulate first so reverts surface before paying gas
        function.call({"from": sender})

        tx = function.build_transaction({
            "from": sender,
            "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
            "gas": self.settings.TX_GAS_LIMIT,
            "chainId": self.settings.CHAIN_ID,
        })
        signed = self.w3.eth.account.sign_transaction(tx, private_key=self.account.key)
        tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        self.log.info(f"Transaction submitted: {tx_hash}")

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.settings.TX_RECEIPT_TIMEOUT)
        if receipt["status"] != 1:
            raise TransactionFailedError(f"Transaction {tx_hash} reverted in block {receipt['blockNumber']}")

        self.log.info(
            f"Transaction confirmed: {tx_hash} "
            f"(block {receipt['blockNumber']}, gas used {receipt['gasUsed']})"
        )
        return tx_hash


async def check_contract_connectivity():
    """Check that the RPC node and the CapyCore contract answer"""
    from settings import settings

    service = ContractService(settings)

    try:
        logger.info("Checking contract connectivity...")
        logger.info(f"RPC connected: {service.w3.is_connected()}")

        count = await service.get_poll_count()
        logger.info(f"✓ Total polls: {count}")

        if count > 0:
            polls = await service.get_new_polls(count - 1, count)
            logger.info(f"✓ Most recent poll: {polls[0]}")

            details = await service.get_poll_details(polls[0])
            logger.info(f"✓ Poll details: {details.model_dump()}")

        logger.success("Contract connectivity check successful!")

    except Exception as e:
        logger.error(f"✗ Contract connectivity check failed: {e}")

    finally:
        await service.close()


if __name__ == "__main__":
    asyncio.run(check_contract_connectivity())
