"""Abstract completion client interface and shared data types."""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from forkchat.models import SamplingParams


class GenerationRequest(BaseModel):
    """Everything a client needs to make one chat-completion call."""

    model: str
    messages: list[dict[str, str]]
    sampling_params: SamplingParams = Field(default_factory=SamplingParams)


class CompletionClient(ABC):
    """Abstract interface for chat-completion backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Client identifier (e.g., 'openai')."""
        ...

    @abstractmethod
    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Generate a completion for an ordered list of role/content messages.

        Raises ConfigurationError before any network call when credentials are
        missing, and ProviderError when the provider fails or returns nothing.
        """
        ...

    @abstractmethod
    async def generate_title(self, transcript: str) -> str:
        """Generate a short conversation title from a flattened transcript."""
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""


def strip_title(raw: str) -> str:
    """Trim whitespace and one pair of surrounding quotes."""
    title = raw.strip()
    if len(title) >= 2 and title[0] == title[-1] and title[0] in "\"'":
        title = title[1:-1].strip()
    return title


class ConfigurationError(Exception):
    """Missing or placeholder credentials. Not retryable."""


class ProviderError(Exception):
    """The provider call failed or returned no candidate output."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)
