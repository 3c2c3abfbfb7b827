"""
Shared fixtures for unit and integration tests.

No test talks to a real provider: every provider and gateway is built
with an httpx.MockTransport that routes requests by path to canned
responses and records what was sent.
"""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from chat_gateway.adapters import BUILTIN_ADAPTERS
from chat_gateway.core.config import GatewayConfig, ProviderConfig, RoutingConfig
from chat_gateway.gateway import ChatGateway

Handler = Callable[[httpx.Request], httpx.Response]


class FakeAPI:
    """Path-routed fake of the provider HTTP APIs."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[str, Handler] = {}

    def route(
        self,
        path: str,
        handler: Optional[Handler] = None,
        *,
        json: Any = None,
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request) -> httpx.Response:
                return httpx.Response(status, json=json, headers=headers)
        self._routes[path] = handler

    def raw(self, path: str, content: bytes, status: int = 200, content_type: str = "text/plain") -> None:
        self.route(
            path,
            lambda request: httpx.Response(status, content=content, headers={"content-type": content_type}),
        )

    @staticmethod
    def sse_content(events: List[Any], done: bool = True) -> bytes:
        """Encode server-sent events; (name, data) tuples get an event field."""
        lines = []
        for event in events:
            if isinstance(event, tuple):
                name, data = event
                lines.append(f"event: {name}\ndata: {json.dumps(data)}\n\n")
            else:
                lines.append(f"data: {json.dumps(event)}\n\n")
        if done:
            lines.append("data: [DONE]\n\n")
        return "".join(lines).encode()

    def sse(self, path: str, events: List[Any], done: bool = True) -> None:
        self.raw(path, self.sse_content(events, done), content_type="text/event-stream")

    def ndjson(self, path: str, objects: List[Dict[str, Any]]) -> None:
        content = "".join(json.dumps(o) + "\n" for o in objects).encode()
        self.raw(path, content, content_type="application/x-ndjson")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": {"message": f"No route for {request.url.path}"}})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int = -1) -> Dict[str, Any]:
        """Decoded JSON body of a recorded request."""
        return json.loads(self.requests[index].content)


class Bodies:
    """Canned provider response bodies."""

    @staticmethod
    def openai(
        text: str = "Hello there",
        model: str = "gpt-4o-mini-2024-07-18",
        prompt_tokens: int = 12,
        completion_tokens: int = 5,
        finish_reason: str = "stop",
        **extra: Any,
    ) -> Dict[str, Any]:
        body = {
            "id": "chatcmpl-123",
            "object": "chat.completion",
            "created": 1700000000,
            "model": model,
            "system_fingerprint": "fp_abc",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": text},
                    "finish_reason": finish_reason,
                }
            ],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }
        body.update(extra)
        return body

    @staticmethod
    def anthropic(
        text: str = "Hello there",
        model: str = "claude-3-5-sonnet-20241022",
        input_tokens: int = 10,
        output_tokens: int = 4,
        stop_reason: str = "end_turn",
    ) -> Dict[str, Any]:
        return {
            "id": "msg_123",
            "type": "message",
            "role": "assistant",
            "model": model,
            "content": [{"type": "text", "text": text}],
            "stop_reason": stop_reason,
            "stop_sequence": None,
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        }

    @staticmethod
    def ollama(
        text: str = "Hello there",
        model: str = "llama3.2",
        prompt_eval_count: Optional[int] = 26,
        eval_count: int = 10,
        eval_duration: int = 500_000_000,
    ) -> Dict[str, Any]:
        body = {
            "model": model,
            "created_at": "2024-07-22T20:33:28.123648Z",
            "message": {"role": "assistant", "content": text},
            "done": True,
            "done_reason": "stop",
            "total_duration": 1_000_000_000,
            "load_duration": 100_000_000,
            "prompt_eval_duration": 250_000_000,
            "eval_count": eval_count,
            "eval_duration": eval_duration,
        }
        if prompt_eval_count is not None:
            body["prompt_eval_count"] = prompt_eval_count
        return body


@pytest.fixture
def fake_api() -> FakeAPI:
    return FakeAPI()


@pytest.fixture
def bodies() -> Bodies:
    return Bodies()


@pytest.fixture
def make_provider(fake_api):
    """Build a provider of the given type wired to the fake API."""
    def _make(provider_type: str, **kwargs):
        kwargs.setdefault("api_key", "test-key")
        name = kwargs.pop("name", provider_type)
        config = ProviderConfig(type=provider_type, name=name, **kwargs)
        return BUILTIN_ADAPTERS[provider_type](config, transport=fake_api.transport)
    return _make


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        default_provider="openai",
        providers=[
            ProviderConfig(type="openai", name="openai", api_key="sk-test"),
            ProviderConfig(type="anthropic", name="anthropic", api_key="sk-ant-test"),
            ProviderConfig(type="ollama", name="ollama", api_key=None),
            ProviderConfig(type="mistral", name="mistral", api_key="mistral-test"),
            ProviderConfig(type="perplexity", name="perplexity", api_key="pplx-test"),
        ],
        routing=RoutingConfig(
            model_routing={
                "gpt-*": ["openai"],
                "claude-*": ["anthropic"],
                "llama3*": ["ollama"],
                "mistral-*": ["mistral"],
                "*sonar*": ["perplexity"],
            }
        ),
        max_concurrency=4,
    )


@pytest.fixture
def gateway(gateway_config, fake_api) -> ChatGateway:
    return ChatGateway(gateway_config, transport=fake_api.transport)
