"""
Reflection Loop - Bounded Re-extraction.

After an extraction pass, the model is asked which items are still missing.
When it names any, the pass is repeated with a hint listing them. The loop
stops when nothing is missing or when the pass budget is spent, and always
returns the last successful extraction.
"""

from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from src.agents.oracle import OracleError
from src.agents.prompts import missing_items_hint
from src.utils.logger import get_logger

logger = get_logger(__name__)

ResultT = TypeVar("ResultT")


class ReflectionLoop(Generic[ResultT]):
    """
    Runs an extraction pass up to max_iterations times.

    The first pass must succeed; its OracleError propagates. A failure of a
    later missing-items request or re-extraction ends the loop with the last
    successful result.

    Usage:
        loop = ReflectionLoop(extract, find_missing, kind="entities")
        result = await loop.run()
    """

    def __init__(
        self,
        extract: Callable[[str], Awaitable[ResultT]],
        find_missing: Callable[[ResultT], Awaitable[list[str]]],
        kind: str,
        max_iterations: int = 3,
    ) -> None:
        """
        Initialize the loop.

        Args:
            extract: Runs one pass given a hint ("" on the first pass)
            find_missing: Names the items a result is missing
            kind: Plural noun of the extracted items, used in the hint
            max_iterations: Maximum number of extraction passes, at least 1
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self._extract = extract
        self._find_missing = find_missing
        self.kind = kind
        self.max_iterations = max_iterations
        self.passes = 0

    async def run(self) -> ResultT:
        """Run the loop and return the last successful extraction."""
        result = await self._extract("")
        self.passes = 1

        while self.passes < self.max_iterations:
            try:
                missing = await self._find_missing(result)
            except OracleError as e:
                logger.warning(f"Missing {self.kind} check failed, keeping pass {self.passes}: {e}")
                break

            missing = [item.strip() for item in missing if item.strip()]
            if not missing:
                break

            logger.debug(f"Pass {self.passes} missed {len(missing)} {self.kind}: {missing}")

            try:
                result = await self._extract(missing_items_hint(self.kind, missing))
            except OracleError as e:
                logger.warning(f"Re-extraction of {self.kind} failed, keeping pass {self.passes}: {e}")
                break

            self.passes += 1

        logger.debug(f"Extracted {self.kind} in {self.passes} pass(es)")
        return result
