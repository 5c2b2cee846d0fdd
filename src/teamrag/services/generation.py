"""Generation backends for TeamRAG."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Literal, Protocol

import httpx

from teamrag.models import GenerationOptions, StreamToken

LOGGER = logging.getLogger(__name__)

BackendName = Literal["ollama", "transformers", "template"]


class BackendError(RuntimeError):
    """Raised when a generation backend returns an error."""


class BackendUnavailableError(BackendError):
    """Raised when a generation backend cannot be reached or is not ready."""


class GenerationBackend(Protocol):
    """Protocol describing generation behaviour."""

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Return the complete response for ``prompt``."""

    def generate_stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[StreamToken]:
        """Yield response increments in order, ending with a ``done`` token."""

    async def health_check(self) -> None:
        """Raise ``BackendUnavailableError`` when the backend cannot serve requests."""

    async def aclose(self) -> None:
        """Release any resources held by the backend."""


async def collect_stream(tokens: AsyncIterator[StreamToken]) -> str:
    """Concatenate streamed tokens in delivery order until ``done`` or an error."""

    parts: list[str] = []
    try:
        async for token in tokens:
            if token.error is not None:
                raise BackendError(f"streaming generation failed: {token.error}") from token.error
            parts.append(token.text)
            if token.done:
                break
    finally:
        aclose = getattr(tokens, "aclose", None)
        if aclose is not None:
            await aclose()
    return "".join(parts)


class TemplateGenerator:
    """Simple deterministic generator used for tests and offline environments."""

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        lines = prompt.splitlines()
        for index, line in enumerate(lines):
            if line.startswith("### Source 1") and index + 1 < len(lines):
                return f"Summary: {lines[index + 1].strip()}"
        return "I do not have enough relevant context to answer that question."

    async def generate_stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[StreamToken]:
        text = await self.generate(prompt, options)
        for index, word in enumerate(text.split(" ")):
            yield StreamToken(text=word if index == 0 else f" {word}")
        yield StreamToken(done=True)

    async def health_check(self) -> None:
        return None

    async def aclose(self) -> None:
        return None


class OllamaGenerator:
    """Generator backed by the Ollama HTTP API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_seconds)

    @property
    def model(self) -> str:
        return self._model

    def _payload(self, prompt: str, options: GenerationOptions, *, stream: bool) -> dict:
        payload: dict = {
            "model": self._model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": options.temperature,
                "top_p": options.top_p,
                "num_predict": options.max_tokens,
            },
        }
        if options.system_prompt:
            payload["system"] = options.system_prompt
        if options.stop_sequences:
            payload["options"]["stop"] = list(options.stop_sequences)
        return payload

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        try:
            response = await self._client.post("/api/generate", json=self._payload(prompt, options, stream=False))
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise BackendUnavailableError(f"ollama unreachable: {exc}") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"ollama request failed: {exc}") from exc
        if response.status_code != httpx.codes.OK:
            raise BackendError(f"ollama API error (status {response.status_code}): {response.text}")
        try:
            return response.json()["response"]
        except (KeyError, ValueError) as exc:
            raise BackendError(f"failed to decode ollama response: {exc}") from exc

    async def generate_stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[StreamToken]:
        payload = self._payload(prompt, options, stream=True)
        try:
            async with self._client.stream("POST", "/api/generate", json=payload) as response:
                if response.status_code != httpx.codes.OK:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    yield StreamToken(error=BackendError(f"ollama API error (status {response.status_code}): {body}"))
                    return
                async for line in response.aiter_lines():
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError as exc:
                        yield StreamToken(error=BackendError(f"failed to decode streaming response: {exc}"))
                        return
                    done = bool(data.get("done", False))
                    yield StreamToken(text=data.get("response", ""), done=done)
                    if done:
                        return
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            yield StreamToken(error=BackendUnavailableError(f"ollama unreachable: {exc}"))
        except httpx.HTTPError as exc:
            yield StreamToken(error=BackendError(f"ollama stream failed: {exc}"))

    async def health_check(self) -> None:
        try:
            response = await self._client.get("/api/tags")
        except httpx.HTTPError as exc:
            raise BackendUnavailableError(f"ollama service unreachable: {exc}") from exc
        if response.status_code != httpx.codes.OK:
            raise BackendUnavailableError(f"ollama service unhealthy (status {response.status_code})")
        try:
            models = [entry.get("name", "") for entry in response.json().get("models", [])]
        except ValueError as exc:
            raise BackendUnavailableError(f"failed to decode models response: {exc}") from exc
        if not any(name.startswith(self._model) for name in models):
            raise BackendUnavailableError(f"model '{self._model}' not found in ollama")

    async def aclose(self) -> None:
        await self._client.aclose()


class TransformersGenerator:
    """Generator running a local causal language model through Transformers.

    Inference is blocking, so it runs in a worker thread guarded by a lock; the
    model is loaded on construction and a load failure leaves the backend
    unavailable rather than silently answering with something else.
    """

    def __init__(self, model: str, *, device: str | None = None) -> None:
        self._model_name = model
        self._device = device
        self._tokenizer = None
        self._model = None
        self._load_error: Exception | None = None
        self._lock = asyncio.Lock()
        try:
            from transformers import AutoModelForCausalLM, AutoTokenizer

            self._tokenizer = AutoTokenizer.from_pretrained(model, trust_remote_code=True)
            self._model = AutoModelForCausalLM.from_pretrained(model, trust_remote_code=True)
            if self._tokenizer.pad_token is None and self._tokenizer.eos_token is not None:
                self._tokenizer.pad_token = self._tokenizer.eos_token
            if getattr(self._model.config, "pad_token_id", None) is None and self._tokenizer.pad_token_id is not None:
                self._model.config.pad_token_id = self._tokenizer.pad_token_id
            if device:
                self._model.to(device)
            LOGGER.info("Loaded generation model %s", model)
        except Exception as exc:  # pragma: no cover - depends on optional install and weights
            LOGGER.warning("Failed to load generation model %s: %s", model, exc)
            self._load_error = exc

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self._ensure_loaded()
        async with self._lock:
            return await asyncio.to_thread(self._generate_sync, prompt, options)

    async def generate_stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[StreamToken]:
        try:
            text = await self.generate(prompt, options)
        except BackendError as exc:
            yield StreamToken(error=exc)
            return
        yield StreamToken(text=text)
        yield StreamToken(done=True)

    async def health_check(self) -> None:
        self._ensure_loaded()

    async def aclose(self) -> None:
        self._model = None
        self._tokenizer = None

    def _ensure_loaded(self) -> None:
        if self._model is None or self._tokenizer is None:
            raise BackendUnavailableError(f"local model {self._model_name} is not loaded: {self._load_error}")

    def _generate_sync(self, prompt: str, options: GenerationOptions) -> str:  # pragma: no cover - needs weights
        import torch

        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})
        if hasattr(self._tokenizer, "apply_chat_template"):
            rendered = self._tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
        else:
            rendered = f"{options.system_prompt}\n\n{prompt}" if options.system_prompt else prompt
        tokenized = self._tokenizer(rendered, return_tensors="pt", padding=True)
        input_ids = tokenized.input_ids
        attention_mask = tokenized.attention_mask
        prompt_length = input_ids.shape[1]
        if self._device:
            input_ids = input_ids.to(self._device)
            attention_mask = attention_mask.to(self._device)
        sampling = options.temperature > 0
        with torch.no_grad():
            output = self._model.generate(
                input_ids,
                attention_mask=attention_mask,
                max_new_tokens=options.max_tokens,
                do_sample=sampling,
                temperature=options.temperature if sampling else None,
                top_p=options.top_p if sampling else None,
            )
        generated = self._tokenizer.decode(output[0][prompt_length:], skip_special_tokens=True)
        for stop in options.stop_sequences:
            position = generated.find(stop)
            if position != -1:
                generated = generated[:position]
        return generated.strip()


def build_generator(
    backend: BackendName,
    *,
    model: str,
    base_url: str = "http://localhost:11434",
    timeout_seconds: float = 30.0,
    device: str | None = None,
) -> GenerationBackend:
    """Instantiate the generation backend variant named by ``backend``."""

    if backend == "ollama":
        return OllamaGenerator(base_url, model, timeout_seconds=timeout_seconds)
    if backend == "transformers":
        return TransformersGenerator(model, device=device)
    if backend == "template":
        return TemplateGenerator()
    raise ValueError(f"unsupported backend: {backend}")
