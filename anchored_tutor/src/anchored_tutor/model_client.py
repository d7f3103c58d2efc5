"""
Generative Model Client

The engine talks to the model through a single coroutine,
`generate(prompt, parameters) -> str`. OpenAIModelClient implements it on
top of the OpenAI chat completions API; tests substitute a fake.
"""

import os
import asyncio
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI
from dotenv import load_dotenv

from anchored_tutor.errors import ModelUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def default_timeout() -> float:
    """Model call timeout from MODEL_TIMEOUT_SECONDS (default 30s)."""
    try:
        return float(os.getenv("MODEL_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
    except ValueError:
        logger.warning("⚠️ [ModelClient] Invalid MODEL_TIMEOUT_SECONDS, using default")
        return DEFAULT_TIMEOUT_SECONDS


class OpenAIModelClient:
    """
    Model collaborator backed by AsyncOpenAI.

    Recognized parameters: system (system prompt), temperature, max_tokens.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY must be set in environment")

        self.llm_client = AsyncOpenAI(api_key=api_key)
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        logger.info(f"✅ [ModelClient] Initialized with model {self.model}")

    async def generate(self, prompt: str, parameters: Optional[Dict[str, Any]] = None) -> str:
        """
        Send one prompt and return the reply text (possibly empty).

        Args:
            prompt: User prompt
            parameters: Optional system prompt and sampling settings

        Returns:
            Reply text, "" when the model returned no content
        """
        parameters = parameters or {}
        messages = []
        if parameters.get("system"):
            messages.append({"role": "system", "content": parameters["system"]})
        messages.append({"role": "user", "content": prompt})

        completion = await self.llm_client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=parameters.get("temperature", 0.7),
            max_tokens=parameters.get("max_tokens", 1024),
        )
        content = completion.choices[0].message.content
        return (content or "").strip()


async def call_model(
    model,
    prompt: str,
    parameters: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None
) -> str:
    """
    Call model.generate bounded by a timeout.

    Raises:
        ModelUnavailable: On timeout or any error from the model
    """
    timeout = timeout if timeout is not None else default_timeout()
    try:
        reply = await asyncio.wait_for(model.generate(prompt, parameters), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"❌ [ModelClient] Model call timed out after {timeout}s")
        raise ModelUnavailable(f"Model call timed out after {timeout}s", cause=e) from e
    except ModelUnavailable:
        raise
    except Exception as e:
        logger.error(f"❌ [ModelClient] Model call failed: {e}")
        raise ModelUnavailable(cause=e) from e
    return reply or ""
