# agent/resolution_service.py
import re
import httpx
from datetime import datetime, timezone
from loguru import logger
from pydantic import BaseModel
from typing import Dict, List, Any, Optional


class ResolutionError(Exception):
    """The analysis did not contain a usable Yes/No answer."""


class Resolution(BaseModel):
    winning_position: bool
    confidence: float
    sources: List[str]
    reasoning: str


ANSWER_RE = re.compile(r"ANSWER:\s*(Yes|No)", re.IGNORECASE)
CONFIDENCE_RE = re.compile(r"CONFIDENCE:\s*(\d+)", re.IGNORECASE)
REASONING_RE = re.compile(r"REASONING:\s*(.*)", re.IGNORECASE)


def build_search_query(question: str) -> str:
    return question.strip().replace("?", "")


def parse_analysis(text: str, sources: List[str]) -> Resolution:
    """Parse the ANSWER / CONFIDENCE / REASONING block returned by the LLM"""
    answer = ANSWER_RE.search(text)
    if not answer:
        raise ResolutionError(f"No Yes/No answer in analysis: {text[:200]!r}")

    confidence = CONFIDENCE_RE.search(text)
    reasoning = REASONING_RE.search(text)

    return Resolution(
        winning_position=answer.group(1).lower() == "yes",
        confidence=min(1.0, int(confidence.group(1)) / 100) if confidence else 0.5,
        sources=sources,
        reasoning=reasoning.group(1).strip() if reasoning else "No specific reasoning provided"
    )


class PollResolutionService:
    """
    Resolves a poll question with a web search followed by an LLM analysis

    1. Exa search for the question
    2. OpenRouter chat completion over the search excerpts
    """

    def __init__(self, settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
        self.log = logger.bind(component="PollResolutionService")

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def search(self, query: str) -> List[Dict[str, Any]]:
        response = await self.client.post(
            f"{self.settings.EXA_API_URL}/search",
            headers={"x-api-key": self.settings.EXA_API_KEY},
            json={
                "query": query,
                "type": "auto",
                "numResults": self.settings.SEARCH_NUM_RESULTS,
                "contents": {"text": True}
            }
        )
        response.raise_for_status()
        return response.json().get("results", [])

    def _format_sources(self, results: List[Dict[str, Any]]) -> str:
        blocks = []
        for i, result in enumerate(results, 1):
            excerpt = (result.get("text") or "")[:self.settings.SEARCH_EXCERPT_CHARS]
            blocks.append(
                f"Source {i}: {result.get('title') or 'Untitled'} - {result.get('url')}\n"
                f"Excerpt: {excerpt}\n"
            )
        return "\n".join(blocks)

    def build_prompt(self, question: str, query: str, results: List[Dict[str, Any]],
                     start_date: Optional[int] = None) -> str:
        creation_line = ""
        if start_date:
            created = datetime.fromtimestamp(start_date, tz=timezone.utc).date().isoformat()
            creation_line = f"Poll creation date: {created}\n"

        return (
            "Based on these search results, answer the following question with Yes or No:\n\n"
            f"Original question: \"{question}\"\n"
            f"Search query used: \"{query}\"\n"
            f"{creation_line}\n"
            f"Search results:\n{self._format_sources(results)}\n"
            "Provide your answer in this exact format:\n"
            "ANSWER: [Yes/No]\n"
            "CONFIDENCE: [number between 50-100]\n"
            "REASONING: [Brief explanation]"
        )

    async def analyze(self, prompt: str) -> str:
        response = await self.client.post(
            self.settings.OPENROUTER_API_URL,
            headers={"Authorization": f"Bearer {self.settings.OPENROUTER_API_KEY}"},
            json={
                "model": self.settings.OPENROUTER_MODEL,
                "messages": [{"role": "user", "content": prompt}]
            }
        )
        response.raise_for_status()
        return response.json()["choices"][0]["message"]["content"] or ""

    async def resolve(self, question: str, start_date: Optional[int] = None) -> Resolution:
        query = build_search_query(question)
        self.log.info(f"Searching for resolution: {query!r}")

        results = await self.search(query)
        self.log.info(f"Search returned {len(results)} results")

        analysis = await self.analyze(self.build_prompt(question, query, results, start_date))
        resolution = parse_analysis(analysis, [r.get("url") for r in results if r.get("url")])

        self.log.info(
            f"Resolution for {question!r}: {'Yes' if resolution.winning_position else 'No'} "
            f"(confidence {resolution.confidence:.2f})"
        )
        return resolution
