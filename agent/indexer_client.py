# agent/indexer_client.py
import httpx
from loguru import logger
from typing import Dict, Any, Optional


class IndexerError(Exception):
    """The Ponder GraphQL endpoint answered with an error."""


POLL_CREATED_QUERY = """query PollCreated($pollAddress: String!) {
  pollCreateds(where: { pollAddress: $pollAddress }) {
    items {
      blockTimestamp
      creator
      pollAddress
      avatar
      question
      description
      yesToken
      noToken
    }
  }
}"""


class PanderIndexerClient:
    """
    Client for the Ponder indexer GraphQL API

    Only the PollCreated table is read: it carries the question text and the
    creation timestamp that the contracts do not expose.
    """

    def __init__(self, url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"}
        )

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def get_poll_created(self, poll_address: str) -> Optional[Dict[str, Any]]:
        """
        Get the PollCreated record of a poll, or None when it is not indexed
        """
        response = await self.client.post(self.url, json={
            "query": POLL_CREATED_QUERY,
            "variables": {"pollAddress": poll_address.lower()}
        })
        if response.status_code >= 400:
            raise IndexerError(
                f"Indexer request failed with status {response.status_code}: {response.text}"
            )

        payload = response.json()
        if payload.get("errors"):
            raise IndexerError(f"Indexer query failed: {payload['errors']}")

        items = ((payload.get("data") or {}).get("pollCreateds") or {}).get("items") or []
        if not items:
            logger.debug(f"Poll {poll_address} not found in indexer")
            return None

        return items[0]
