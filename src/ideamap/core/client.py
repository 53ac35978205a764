"""llm client using claude-agent-sdk.

used for turning a product idea into a mind map.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from claude_agent_sdk import (
    ClaudeAgentOptions,
    ClaudeSDKClient,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sonnet"


@dataclass
class CompletionResult:
    """text of a completion plus usage accounting."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cost_usd: float = 0.0


@runtime_checkable
class ClientProtocol(Protocol):
    """protocol for llm clients (real or mock)."""

    async def complete(self, prompt: str) -> CompletionResult:
        """send prompt and return response."""
        ...


class MockClient:
    """mock client for testing without api calls."""

    def __init__(self, responses: Optional[dict[str, str]] = None, delay: float = 0.0):
        """init with optional response mapping.

        responses: dict mapping prompt substrings to responses.
        if prompt contains key (case-insensitive), return value.
        delay: simulated API delay in seconds.
        """
        self.responses = responses or {}
        self.calls: list[str] = []  # track all prompts sent
        self.delay = delay
        self.default_response = (
            '{"reasoning": "mock mode", "nodes": ['
            '{"id": "root", "type": "core-concept", "position": {"x": 0, "y": 0}, "data": {"label": "your idea"}},'
            '{"id": "f1", "type": "feature", "position": {"x": -200, "y": 160}, "data": {"label": "sign in"}},'
            '{"id": "f2", "type": "feature", "position": {"x": 200, "y": 160}, "data": {"label": "dashboard"}}'
            '], "edges": ['
            '{"id": "e1", "source": "root", "target": "f1"},'
            '{"id": "e2", "source": "root", "target": "f2"}'
            ']}'
        )

    async def complete(self, prompt: str) -> CompletionResult:
        """return mock response based on prompt."""
        self.calls.append(prompt)

        if self.delay:
            await asyncio.sleep(self.delay)

        prompt_lower = prompt.lower()
        for key, response in self.responses.items():
            if key.lower() in prompt_lower:
                return CompletionResult(text=response)

        return CompletionResult(text=self.default_response)


class ClaudeClient:
    """async client for claude using claude-agent-sdk.

    creates a fresh connection per query to avoid state conflicts.
    """

    def __init__(self, cwd: Optional[Path] = None, model: str = DEFAULT_MODEL):
        self.cwd = cwd or Path.cwd()
        self.model = model

    async def complete(self, prompt: str) -> CompletionResult:
        """send a prompt and collect the full response.

        no tools are enabled: this is pure text generation.
        """
        options = ClaudeAgentOptions(
            cwd=str(self.cwd),
            model=self.model,
            tools=[],
            allowed_tools=[],
        )
        client: Optional[ClaudeSDKClient] = None
        result = CompletionResult(text="")

        try:
            client = ClaudeSDKClient(options)
            await client.connect()
            await client.query(prompt)

            text_parts: list[str] = []
            async for event in client.receive_response():
                if hasattr(event, "message") and hasattr(event.message, "content"):
                    for block in event.message.content:
                        if hasattr(block, "text"):
                            text_parts.append(block.text)
                elif hasattr(event, "content") and isinstance(event.content, list):
                    for block in event.content:
                        if hasattr(block, "text"):
                            text_parts.append(block.text)

                # the final result message carries usage
                usage = getattr(event, "usage", None)
                if isinstance(usage, dict):
                    result.input_tokens = usage.get("input_tokens", 0)
                    result.output_tokens = usage.get("output_tokens", 0)
                    result.cache_read_tokens = usage.get("cache_read_input_tokens", 0)
                    result.cache_creation_tokens = usage.get("cache_creation_input_tokens", 0)
                cost = getattr(event, "total_cost_usd", None)
                if isinstance(cost, (int, float)):
                    result.cost_usd = float(cost)

            logger.debug("collected %d text parts", len(text_parts))
            result.text = "\n".join(text_parts) if text_parts else "(no response)"
            return result

        except Exception as e:
            error_trace = traceback.format_exc()
            raise RuntimeError(
                f"claude api error: {e}\n\n"
                f"this may be a transient error. try again.\n\n"
                f"trace:\n{error_trace}"
            ) from e

        finally:
            if client:
                try:
                    await client.disconnect()
                except Exception:
                    logger.debug("ignoring disconnect error", exc_info=True)
