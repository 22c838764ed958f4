"""LLM agent runners used by agent nodes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from ..config import AppConfig
from .error_recovery import RetryConfig
from ..media.providers import HttpJsonClient
from ..models.core import ChatMessage
from .exceptions import ProviderError
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AgentRequest:
    model: Optional[str]
    system_prompt: str
    messages: List[ChatMessage] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2000


class AgentRunner(ABC):
    """Turns a chat transcript into the assistant's next reply."""

    @abstractmethod
    def run(self, request: AgentRequest) -> str:
        """Return the assistant reply text."""

    def close(self) -> None:
        pass


class ChatCompletionsAgentRunner(HttpJsonClient, AgentRunner):
    """Agent runner for OpenAI-compatible ``/chat/completions`` endpoints."""

    name = "agent"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        default_model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__(
            base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            retry_config=retry_config,
            transport=transport,
        )
        self.default_model = default_model

    @classmethod
    def from_config(cls, config: AppConfig) -> Optional["ChatCompletionsAgentRunner"]:
        if not config.agent_api_key:
            return None
        return cls(
            config.agent_api_key,
            base_url=config.agent_base_url,
            default_model=config.agent_model,
            timeout=config.provider_timeout,
            retry_config=RetryConfig(max_attempts=config.http_retry_attempts),
        )

    def run(self, request: AgentRequest) -> str:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend({"role": m.role, "content": m.content} for m in request.messages)

        # Editor model ids may carry a routing prefix such as "kie:"
        model = (request.model or self.default_model).split(":")[-1]
        payload = self._request("POST", "/chat/completions", json={
            "model": model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        })
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Agent endpoint returned no message content", provider=self.name) from e
        logger.debug(f"Agent reply received ({len(content or '')} chars)")
        return content or ""
