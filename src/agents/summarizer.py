"""
Entity Summarizer - Rolling Entity Summaries.

Rewrites the summary of each resolved entity from its existing summary and
the current messages. Requests for different entities run concurrently.
"""

import asyncio

from src.agents.oracle import OracleClient
from src.agents.prompts import entity_summary_messages
from src.agents.schemas import EntitySummaryResponse
from src.knowledge.schemas import EntityNode, Episode
from src.utils.logger import get_logger

logger = get_logger(__name__)


class EntitySummarizer:
    """
    LLM-based entity summary writer.

    Usage:
        summarizer = EntitySummarizer(oracle)
        summaries = await summarizer.summarize(nodes, episode, history)
    """

    def __init__(self, oracle: OracleClient) -> None:
        self.oracle = oracle

    async def summarize(
        self,
        nodes: list[EntityNode],
        episode: Episode,
        history: list[Episode],
    ) -> dict[str, str]:
        """
        Rewrite the summaries of the given nodes.

        Args:
            nodes: Resolved nodes mentioned by the episode
            episode: Episode being ingested
            history: Prior episodes of the tenant in chronological order

        Returns:
            Mapping node id -> new summary

        Raises:
            OracleError: If any summary request fails
        """
        if not nodes:
            return {}

        previous = [e.content for e in history]

        async def summarize_one(node: EntityNode) -> str:
            messages = entity_summary_messages(node, episode.content, previous)
            response = await self.oracle.predict(messages, EntitySummaryResponse)
            return response.summary.strip()

        summaries = await asyncio.gather(*(summarize_one(node) for node in nodes))

        logger.info(f"Summarized {len(nodes)} entities for episode {episode.id}")
        return {node.id: summary for node, summary in zip(nodes, summaries)}
