"""
Ollama adapter.

Talks to a local (or LAN) Ollama server over plain HTTP. Sampling and
hardware-affinity knobs are nested under `options`; streaming uses
newline-delimited JSON; the final message carries token counts and
nanosecond timings.

Besides chat, the adapter exposes Ollama's raw `/api/generate`
endpoint and its model management API (show, pull, benchmark).
"""

import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from ..core.errors import DecodeError, ProviderError, UnsupportedOptionError
from ..core.interface import AbstractProvider, ProviderCapability, ProviderKind
from ..metadata import tokens_per_second
from ..models.request import ChatMessage, GenerationOptions
from ..models.response import CompletionResult, RawResponse, StreamChunk, Usage
from ..streaming import StreamEvent, StreamParser, iter_ndjson

logger = logging.getLogger(__name__)

# Runtime knobs accepted under `options`
HARDWARE_OPTIONS = frozenset({
    "num_ctx",
    "num_gpu",
    "main_gpu",
    "low_vram",
    "num_thread",
    "num_batch",
    "use_mmap",
    "use_mlock",
    "numa",
    "num_keep",
    "repeat_penalty",
    "repeat_last_n",
    "min_p",
    "mirostat",
    "mirostat_eta",
    "mirostat_tau",
})

# camelCase spellings used by some clients
OPTION_ALIASES = {
    "numCtx": "num_ctx",
    "numGPU": "num_gpu",
    "mainGPU": "main_gpu",
    "lowVRAM": "low_vram",
    "numThread": "num_thread",
    "numBatch": "num_batch",
    "useMMap": "use_mmap",
    "useMLock": "use_mlock",
    "repeatPenalty": "repeat_penalty",
    "keepAlive": "keep_alive",
}

# Tuned defaults per model family, applied when enabled in provider config
MODEL_FAMILY_PRESETS = {
    "llama": {"num_ctx": 4096, "repeat_penalty": 1.1, "temperature": 0.7},
    "mistral": {"num_ctx": 8192, "repeat_penalty": 1.0, "temperature": 0.8},
    "phi": {"num_ctx": 2048, "temperature": 0.75},
}

TIMING_FIELDS = (
    "total_duration",
    "load_duration",
    "prompt_eval_count",
    "prompt_eval_duration",
    "eval_count",
    "eval_duration",
)

GENERATE_PATH = "/api/generate"
SHOW_PATH = "/api/show"
PULL_PATH = "/api/pull"
VERSION_PATH = "/api/version"

BENCHMARK_PROMPT = "The quick brown fox jumps over the lazy dog."


def _usage(data: Dict[str, Any]) -> Usage:
    # prompt_eval_count is omitted when the prompt was served from cache
    return Usage(
        input_tokens=data.get("prompt_eval_count") or 0,
        output_tokens=data.get("eval_count") or 0,
    )


def _text(data: Dict[str, Any]) -> str:
    if "message" in data:
        return (data["message"] or {}).get("content") or ""
    return data.get("response") or ""


class OllamaStreamParser(StreamParser):
    """
    Parser for Ollama NDJSON chunks; the `done` chunk is final.

    Chat chunks carry text under `message.content`, generate chunks under
    `response`.
    """

    def feed(self, event: StreamEvent) -> List[StreamChunk]:
        data = event.data
        if "error" in data:
            raise ProviderError(f"Ollama error: {data['error']}", provider=self.provider, body=data)

        self.model = data.get("model") or self.model
        self.response_id = data.get("created_at") or self.response_id
        text = _text(data)

        if data.get("done"):
            self.finish_reason = data.get("done_reason") or "stop"
            self.usage = _usage(data)
            return [self._chunk(text, is_final=True, raw=data)]

        if text:
            return [self._chunk(text, raw=data)]
        return []


class OllamaAdapter(AbstractProvider):
    """
    Ollama adapter for local LLM inference.

    No API key is needed. Hardware extras (GPU layers, threads, memory
    mapping/locking, NUMA, batch size, context size) are passed through
    under `options`; images must be base64 encoded.
    """

    KIND = ProviderKind.OLLAMA
    CAPABILITIES = frozenset({
        ProviderCapability.STREAMING,
        ProviderCapability.STOP_SEQUENCES,
        ProviderCapability.TOP_K,
        ProviderCapability.SEED,
        ProviderCapability.PENALTIES,
        ProviderCapability.HARDWARE_OPTIONS,
        ProviderCapability.VISION,
        ProviderCapability.JSON_MODE,
        ProviderCapability.TIMING_METRICS,
    })
    DEFAULT_BASE_URL = "http://localhost:11434"
    DEFAULT_MODEL = "llama3.2"
    COMPLETIONS_PATH = "/api/chat"
    MODELS_PATH = "/api/tags"
    STREAM_FRAMING = "ndjson"
    REQUIRES_API_KEY = False
    EXTRA_KEYS = HARDWARE_OPTIONS | {"keep_alive"}

    def _extras(self, options: GenerationOptions) -> Dict[str, Any]:
        normalized = {OPTION_ALIASES.get(k, k): v for k, v in options.extras.items()}
        return super()._extras(options.model_copy(update={"extras": normalized}))

    def validate(self, messages: Sequence[ChatMessage], options: GenerationOptions) -> None:
        super().validate(messages, options)
        for m in messages:
            if m.media is not None and m.media.data is None:
                raise UnsupportedOptionError(
                    "Ollama only accepts base64 image data, not URLs",
                    provider=self._name,
                    option="media",
                )

    def model_presets(self, model: str) -> Dict[str, Any]:
        """Preset options for the model family, if any."""
        name = model.lower()
        for family, preset in MODEL_FAMILY_PRESETS.items():
            if family in name:
                return dict(preset)
        return {}

    def _build_options(self, options: GenerationOptions, extras: Dict[str, Any]) -> Dict[str, Any]:
        """Build the nested Ollama `options` object."""
        ollama_options: Dict[str, Any] = {}

        if self._config.extra.get("apply_model_presets"):
            ollama_options.update(self.model_presets(options.model))

        if options.temperature is not None:
            ollama_options["temperature"] = options.temperature
        if options.top_p is not None:
            ollama_options["top_p"] = options.top_p
        if options.top_k is not None:
            ollama_options["top_k"] = options.top_k
        if options.max_tokens is not None:
            ollama_options["num_predict"] = options.max_tokens
        if options.seed is not None:
            ollama_options["seed"] = options.seed
        if options.presence_penalty is not None:
            ollama_options["presence_penalty"] = options.presence_penalty
        if options.frequency_penalty is not None:
            ollama_options["frequency_penalty"] = options.frequency_penalty
        if options.stop:
            ollama_options["stop"] = list(options.stop)

        ollama_options.update({k: v for k, v in extras.items() if k in HARDWARE_OPTIONS})
        return ollama_options

    def _response_format(self, response_format: Dict[str, Any]) -> Any:
        if response_format.get("type") == "json_schema":
            return (response_format.get("json_schema") or {}).get("schema", "json")
        return "json"

    def _build_payload(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        chat_messages = []
        for m in messages:
            message: Dict[str, Any] = {"role": m.role, "content": m.content}
            if m.media is not None:
                message["images"] = [m.media.data]
            chat_messages.append(message)

        payload: Dict[str, Any] = {
            "model": options.model,
            "messages": chat_messages,
            "stream": stream,
        }
        return self._with_runtime_fields(payload, options)

    def _with_runtime_fields(self, payload: Dict[str, Any], options: GenerationOptions) -> Dict[str, Any]:
        """Add `options`, `keep_alive` and `format`, shared by chat and generate."""
        extras = self._extras(options)

        ollama_options = self._build_options(options, extras)
        if ollama_options:
            payload["options"] = ollama_options

        keep_alive = extras.get("keep_alive", self._config.extra.get("keep_alive"))
        if keep_alive is not None:
            payload["keep_alive"] = keep_alive

        if options.response_format:
            payload["format"] = self._response_format(options.response_format)

        return payload

    def parse_response(self, raw: RawResponse, requested_model: str) -> CompletionResult:
        body = raw.body
        if "message" not in body and "response" not in body:
            raise DecodeError("Response has no message", provider=self._name, body=body)
        if not body.get("done", False):
            raise DecodeError("Response is not complete", provider=self._name, body=body)

        return CompletionResult(
            text=_text(body),
            finish_reason=body.get("done_reason") or "stop",
            model=body.get("model") or requested_model,
            requested_model=requested_model,
            response_id=body.get("created_at", ""),
            provider=self._name,
            usage=_usage(body),
            raw=body,
        )

    def stream_parser(self, requested_model: str) -> StreamParser:
        return OllamaStreamParser(self._name, requested_model)

    def _provider_metadata(self, body: Dict[str, Any]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"created_at": body.get("created_at")}
        for field in TIMING_FIELDS:
            metadata[field] = body.get(field)

        metadata["prompt_tokens_per_second"] = tokens_per_second(
            body.get("prompt_eval_count"), body.get("prompt_eval_duration")
        )
        metadata["generate_tokens_per_second"] = tokens_per_second(
            body.get("eval_count"), body.get("eval_duration")
        )
        return metadata

    def _parse_models(self, body: Any) -> List[Dict[str, Any]]:
        if not isinstance(body, dict):
            return []
        return [
            {
                "id": model.get("name"),
                "name": model.get("name"),
                "size": model.get("size"),
                "modified_at": model.get("modified_at"),
                "digest": model.get("digest"),
                "details": model.get("details", {}),
            }
            for model in body.get("models", [])
        ]

    # ------------------------------------------------------------------
    # Raw generation
    # ------------------------------------------------------------------

    def build_generate_request(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        stream: bool = False,
    ) -> Tuple[Dict[str, Any], GenerationOptions]:
        """Validate a prompt and build the `/api/generate` payload."""
        resolved = self.resolve_options(options)
        self.validate([ChatMessage.user(prompt)], resolved)
        payload: Dict[str, Any] = {
            "model": resolved.model,
            "prompt": prompt,
            "stream": stream,
        }
        return self._with_runtime_fields(payload, resolved), resolved

    async def generate(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> CompletionResult:
        """
        Complete a bare prompt without chat formatting.

        Args:
            prompt: Prompt text, sent as is
            options: Generation options

        Returns:
            Normalized completion result; `raw` keeps the timing fields
        """
        payload, resolved = self.build_generate_request(prompt, options)
        raw = await self.invoke(payload, resolved, path=GENERATE_PATH)
        return self.normalize(raw, resolved.model)

    async def stream_generate(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a bare prompt completion; ends with exactly one final chunk."""
        payload, resolved = self.build_generate_request(prompt, options, stream=True)
        chunks = self._stream_chunks(payload, resolved, path=GENERATE_PATH)
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()

    # ------------------------------------------------------------------
    # Model management
    # ------------------------------------------------------------------

    async def show_model(self, model: str) -> Dict[str, Any]:
        """Details of a local model: modelfile, parameters, template and architecture."""
        client = await self._get_client()
        raw = await client.post_json(SHOW_PATH, {"model": model})
        if not isinstance(raw.body, dict):
            raise DecodeError("Model details are not a JSON object", provider=self._name, body=raw.body)
        return raw.body

    async def pull_model(self, model: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Download a model from the Ollama library or a GGUF repository.

        Yields the server's progress updates (`status`, and `completed` /
        `total` byte counts while layers download).

        Raises:
            ProviderError: If the server reports an error mid-pull
            DecodeError: If the stream ends without a `success` status
        """
        client = await self._get_client()
        lines = client.stream_lines(PULL_PATH, {"model": model, "stream": True})
        events = iter_ndjson(lines, provider=self._name)
        status = None
        try:
            async for event in events:
                if "error" in event.data:
                    raise ProviderError(
                        f"Ollama pull failed: {event.data['error']}",
                        provider=self._name,
                        body=event.data,
                    )
                status = event.data.get("status")
                yield event.data
        finally:
            await events.aclose()
            await lines.aclose()

        if status != "success":
            raise DecodeError(f"Pull of {model} ended with status {status!r}", provider=self._name)
        logger.info(f"Pulled model {model} on {self._name}")

    async def performance_metrics(self, model: Optional[str] = None) -> Dict[str, Any]:
        """
        Benchmark a model with one short generation.

        Returns the model details, wall-clock response time, the server's
        timing fields and prompt/generation throughput in tokens per second.
        """
        model = model or self.default_model
        details = await self.show_model(model)

        started = time.perf_counter()
        result = await self.generate(BENCHMARK_PROMPT, GenerationOptions(model=model))
        elapsed_ms = (time.perf_counter() - started) * 1000

        metrics: Dict[str, Any] = {
            "model": model,
            "details": details.get("details", {}),
            "response_time_ms": elapsed_ms,
        }
        metrics.update(self._provider_metadata(result.raw))
        return metrics

    async def server_info(self) -> Dict[str, Any]:
        """Server version, installed models and what this adapter supports."""
        client = await self._get_client()
        raw = await client.get_json(VERSION_PATH)
        version = raw.body.get("version") if isinstance(raw.body, dict) else None
        return {
            "provider": self._name,
            "base_url": self.base_url,
            "version": version,
            "models": await self.list_models(),
            "capabilities": sorted(c.value for c in self.CAPABILITIES),
        }
