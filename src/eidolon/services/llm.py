"""Client for the external text-generation service (OpenAI-compatible)."""

from typing import Any, Optional, Protocol

import httpx
from loguru import logger

from .. import config
from ..core.exceptions import (
    LLMConnectionError,
    LLMException,
    LLMResponseError,
    LLMTimeoutError,
)
from ..core.resilience import RetryPolicy
from ..core.tokens import DEFAULT_TOKEN_BUDGET, TokenBudget

# Context window reserved for the prompt, per model class
MAX_PROMPT_TOKENS = {"small": 8000, "large": 16000}


class TextGenerator(Protocol):
    async def chat(
        self,
        messages: list[dict[str, str]],
        *,
        api_key: Optional[str] = None,
        model_class: str = "large",
        max_tokens: int = 150,
        temperature: float = 0.7,
        presence_penalty: float = 0.0,
        token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
    ) -> str:
        ...

    async def generate_text(
        self,
        context: str,
        *,
        api_key: Optional[str] = None,
        model_class: str = "small",
        max_tokens: int = 256,
        token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
    ) -> str:
        ...


class TextGenerationClient:
    """
    httpx client for `/chat/completions`.

    Each request is bounded by `timeout`. Connection failures and 429/5xx
    answers are retried through `retry_policy`; timeouts are not retried
    here because the turn-level deadline is already running.
    """

    def __init__(
        self,
        base_url: str = config.LLM_BASE_URL,
        models: Optional[dict[str, str]] = None,
        timeout: float = config.LLM_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        default_api_key: Optional[str] = config.OPENAI_API_KEY,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.models = models or {"small": config.LLM_MODEL_SMALL, "large": config.LLM_MODEL_LARGE}
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=config.LLM_MAX_ATTEMPTS)
        self.default_api_key = default_api_key
        self._client = client

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    async def _post(self, payload: dict[str, Any], api_key: Optional[str]) -> str:
        headers = {"Content-Type": "application/json"}
        key = api_key or self.default_api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(self.timeout, self.url) from e
        except httpx.TransportError as e:
            raise LLMConnectionError(self.url, e) from e

        if response.status_code >= 400:
            raise LLMResponseError(response.status_code, response.text, self.url)

        try:
            data = response.json()
            return data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMResponseError(response.status_code, response.text, self.url) from e

    @staticmethod
    def _transient(error: BaseException) -> bool:
        if isinstance(error, LLMResponseError):
            return error.transient
        return isinstance(error, LLMConnectionError)

    async def chat(
        self,
        messages: list[dict[str, str]],
        *,
        api_key: Optional[str] = None,
        model_class: str = "large",
        max_tokens: int = 150,
        temperature: float = 0.7,
        presence_penalty: float = 0.0,
        token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
    ) -> str:
        """
        Run a chat completion.

        The system message is trimmed with `token_budget` so the whole
        prompt fits the model class's window.

        Raises:
            LLMTimeoutError: request exceeded `timeout`
            LLMResponseError: non-transient error status or bad body
            RetryExhaustedError: transient failures on every attempt
        """
        limit = MAX_PROMPT_TOKENS.get(model_class, MAX_PROMPT_TOKENS["small"])
        others = sum(token_budget.estimate(m["content"]) for m in messages if m["role"] != "system")
        trimmed = []
        for message in messages:
            if message["role"] == "system":
                message = {**message, "content": token_budget.trim(message["content"], max(limit - others, 0))}
            trimmed.append(message)

        payload = {
            "model": self.models.get(model_class, self.models["small"]),
            "messages": trimmed,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "presence_penalty": presence_penalty,
        }
        logger.debug(
            f"LLM chat: model={payload['model']} messages={len(trimmed)} "
            f"prompt_tokens~{sum(token_budget.estimate(m['content']) for m in trimmed)}"
        )
        return await self.retry_policy.run(
            lambda: self._post(payload, api_key),
            retry_on=(LLMException,),
            should_retry=self._transient,
            operation_name="LLM chat completion",
        )

    async def generate_text(
        self,
        context: str,
        *,
        api_key: Optional[str] = None,
        model_class: str = "small",
        max_tokens: int = 256,
        token_budget: TokenBudget = DEFAULT_TOKEN_BUDGET,
    ) -> str:
        """Single-prompt completion used for structured selections."""
        limit = MAX_PROMPT_TOKENS.get(model_class, MAX_PROMPT_TOKENS["small"])
        return await self.chat(
            [{"role": "user", "content": token_budget.trim(context, limit)}],
            api_key=api_key,
            model_class=model_class,
            max_tokens=max_tokens,
            temperature=0.3,
            token_budget=token_budget,
        )
