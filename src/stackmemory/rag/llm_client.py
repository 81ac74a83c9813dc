"""LiteLLM client wrappers for embeddings and chat generation.

All provider calls route through this module. LiteLLM's built-in retry is
used for transient errors (num_retries=3, exponential backoff). API key
presence is validated at startup before any provider call.

``EmbeddingClient`` and ``GenerationClient`` are plain objects built once per
process (see stackmemory.services) and passed into the components that need
them, so tests can substitute fakes without patching module state.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import litellm

from stackmemory.errors import EmbeddingFailed, GenerationFailed

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string ('openai' if absent)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float = 0.0,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def embed(model: str, text: str, num_retries: int = 3) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns embedding vector."""
    response = litellm.embedding(
        model=model,
        input=[text],
        num_retries=num_retries,
    )
    return response.data[0]["embedding"]


# ------------------------------------------------------------------
# Embedding client
# ------------------------------------------------------------------


class EmbeddingClient:
    """Turns text into a fixed-length vector with one embedding model.

    Args:
        model: LiteLLM embedding model string.
        dimensions: Expected vector length; a response of any other length
            is treated as a failure.
        num_retries: Retries on transient provider errors.
    """

    def __init__(self, model: str, dimensions: int, num_retries: int = 3) -> None:
        self.model = model
        self.dimensions = dimensions
        self.num_retries = num_retries

    def embed(self, text: str) -> list[float]:
        """Return the embedding for *text*.

        Raises:
            EmbeddingFailed: On provider error or a vector of the wrong length.
        """
        try:
            vector = embed(self.model, text, num_retries=self.num_retries)
        except Exception as exc:
            raise EmbeddingFailed(f"{self.model}: {type(exc).__name__}: {exc}") from exc
        if len(vector) != self.dimensions:
            raise EmbeddingFailed(
                f"{self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector


# ------------------------------------------------------------------
# Generation client
# ------------------------------------------------------------------


@dataclass
class TokenStream:
    """An open upstream completion stream.

    Iterate to receive text deltas; call close() to release the upstream
    connection early.
    """

    model: str
    response: Any

    def __iter__(self) -> Iterator[str]:
        for chunk in self.response:
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = choices[0].delta
            text = getattr(delta, "content", None)
            if text:
                yield text

    def close(self) -> None:
        for target in (self.response, getattr(self.response, "completion_stream", None)):
            close = getattr(target, "close", None)
            if callable(close):
                close()
                return


class GenerationClient:
    """Chat model with an optional fallback used when the primary is rate-limited.

    Args:
        model: Primary LiteLLM model string.
        fallback_model: Model tried once when the primary raises
            litellm.RateLimitError while opening a stream or completing.
        max_tokens: Output token cap per request.
        temperature: Sampling temperature.
        num_retries: Retries on transient errors other than rate limits.
    """

    def __init__(
        self,
        model: str,
        fallback_model: str | None = None,
        *,
        max_tokens: int = 2048,
        temperature: float = 0.2,
        num_retries: int = 2,
    ) -> None:
        self.model = model
        self.fallback_model = fallback_model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.num_retries = num_retries

    def open_stream(self, messages: list[dict]) -> TokenStream:
        """Open a streaming completion and return it before any token is read.

        Raises:
            GenerationFailed: If neither the primary nor the fallback model
                accepts the request.
        """
        try:
            return TokenStream(model=self.model, response=self._stream(self.model, messages))
        except litellm.RateLimitError as exc:
            if not self.fallback_model:
                raise GenerationFailed(f"{self.model} rate limited: {exc}") from exc
            logger.warning(
                "%s rate limited, falling back to %s", self.model, self.fallback_model
            )
        except Exception as exc:
            raise GenerationFailed(f"{self.model}: {type(exc).__name__}: {exc}") from exc

        try:
            return TokenStream(
                model=self.fallback_model,
                response=self._stream(self.fallback_model, messages),
            )
        except Exception as exc:
            raise GenerationFailed(
                f"{self.fallback_model}: {type(exc).__name__}: {exc}"
            ) from exc

    def complete(self, messages: list[dict]) -> tuple[str, str]:
        """Run a non-streaming completion. Returns (text, model_used).

        Raises:
            GenerationFailed: If neither model produces a response.
        """
        try:
            return self._complete(self.model, messages), self.model
        except litellm.RateLimitError as exc:
            if not self.fallback_model:
                raise GenerationFailed(f"{self.model} rate limited: {exc}") from exc
            logger.warning(
                "%s rate limited, falling back to %s", self.model, self.fallback_model
            )
        except Exception as exc:
            raise GenerationFailed(f"{self.model}: {type(exc).__name__}: {exc}") from exc

        try:
            return self._complete(self.fallback_model, messages), self.fallback_model
        except Exception as exc:
            raise GenerationFailed(
                f"{self.fallback_model}: {type(exc).__name__}: {exc}"
            ) from exc

    def _stream(self, model: str, messages: list[dict]) -> Any:
        return litellm.completion(
            model=model,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stream=True,
            num_retries=self.num_retries,
        )

    def _complete(self, model: str, messages: list[dict]) -> str:
        return complete(
            model,
            messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            num_retries=self.num_retries,
        )
