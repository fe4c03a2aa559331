"""
Oracle Client - Structured Requests to the Language Model.

Sends chat messages to a LlamaIndex LLM and returns the response parsed into
a pydantic model. Structured output is tried first; when the model or the
provider cannot produce it, the plain chat completion is parsed as JSON.
Every call is bounded by a timeout.
"""

import asyncio
import json
from typing import Any, TypeVar

from llama_index.core.llms import ChatMessage, MessageRole
from pydantic import BaseModel, ValidationError

from src.utils.logger import get_logger

logger = get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class OracleError(Exception):
    """Raised when the language model cannot produce a usable response."""
    pass


class OracleTimeoutError(OracleError):
    """Raised when a language model call exceeds its timeout."""
    pass


def extract_json_text(text: str) -> str:
    """Strip markdown code fences around a JSON payload."""
    text = text.strip()

    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    return text


class OracleClient:
    """
    Structured-output client for extraction requests.

    Usage:
        oracle = OracleClient(timeout=60.0)
        response = await oracle.predict(messages, EntityExtractionResponse)
    """

    def __init__(
        self,
        llm: Any = None,
        timeout: float | None = 60.0,
        use_structured_output: bool = True,
    ) -> None:
        """
        Initialize the oracle client.

        Args:
            llm: LLM instance (if None, will use default from llm_factory)
            timeout: Seconds allowed for one request; None disables the bound
            use_structured_output: Try the provider's structured output first
        """
        self._llm = llm
        self.timeout = timeout
        self._use_structured_output = use_structured_output

    @property
    def llm(self) -> Any:
        """Get the LLM instance."""
        if self._llm is None:
            from src.utils.llm_factory import get_llm

            self._llm = get_llm()
        return self._llm

    async def predict(
        self,
        messages: list[ChatMessage],
        output_cls: type[ResponseT],
    ) -> ResponseT:
        """
        Send messages and parse the reply into output_cls.

        Args:
            messages: Ordered chat messages
            output_cls: Pydantic model the reply must match

        Returns:
            Validated instance of output_cls

        Raises:
            OracleTimeoutError: If the call exceeds the timeout
            OracleError: On transport failure or unparseable output
        """
        try:
            return await asyncio.wait_for(
                self._predict(messages, output_cls), timeout=self.timeout
            )
        except TimeoutError as e:
            raise OracleTimeoutError(
                f"{output_cls.__name__} request timed out after {self.timeout}s"
            ) from e
        except OracleError:
            raise
        except Exception as e:
            raise OracleError(f"{output_cls.__name__} request failed: {e}") from e

    async def _predict(
        self,
        messages: list[ChatMessage],
        output_cls: type[ResponseT],
    ) -> ResponseT:
        if self._use_structured_output:
            try:
                return await self._predict_structured(messages, output_cls)
            except Exception as e:
                logger.warning(
                    f"Structured {output_cls.__name__} request failed: {e}, "
                    "falling back to unstructured"
                )

        return await self._predict_unstructured(messages, output_cls)

    async def _predict_structured(
        self,
        messages: list[ChatMessage],
        output_cls: type[ResponseT],
    ) -> ResponseT:
        """Use the provider's structured output support."""
        structured_llm = self.llm.as_structured_llm(output_cls)
        response = await structured_llm.achat(messages)

        if isinstance(response.raw, output_cls):
            return response.raw
        return output_cls.model_validate_json(extract_json_text(response.message.content or ""))

    async def _predict_unstructured(
        self,
        messages: list[ChatMessage],
        output_cls: type[ResponseT],
    ) -> ResponseT:
        """Ask for plain JSON and validate it."""
        schema = json.dumps(output_cls.model_json_schema())
        request = [
            *messages,
            ChatMessage(
                role=MessageRole.USER,
                content=(
                    "Respond with valid JSON only, matching this JSON schema:\n" + schema
                ),
            ),
        ]

        response = await self.llm.achat(request)
        text = extract_json_text(response.message.content or "")

        try:
            return output_cls.model_validate(json.loads(text))
        except json.JSONDecodeError as e:
            raise OracleError(f"Failed to parse LLM output as JSON: {e}") from e
        except ValidationError as e:
            raise OracleError(f"LLM output does not match {output_cls.__name__}: {e}") from e
