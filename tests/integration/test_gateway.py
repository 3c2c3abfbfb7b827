"""
Integration tests for the ChatGateway facade.

Every provider is configured against the fake API, so these tests run
the full path: routing, payload building, HTTP, normalization, metadata
and fan-out.
"""

import json

import httpx
import pytest

from chat_gateway import ChatGateway
from chat_gateway.core.errors import (
    GatewayConfigError,
    ProviderError,
    ProviderNotFoundError,
    TransportError,
    UnsupportedOptionError,
)
from chat_gateway.models import ChatMessage, GenerationOptions
from chat_gateway.streaming import collect_stream

ANSWERS = {"1+1?": "2", "2+2?": "4", "3+3?": "6", "Hello": "Hi"}


def openai_echo(bodies, fail_on=()):
    """OpenAI-shaped handler that answers simple sums."""
    def handler(request):
        payload = json.loads(request.content)
        prompt = payload["messages"][-1]["content"]
        if payload["model"] in fail_on or prompt in fail_on:
            return httpx.Response(404, json={"error": {"message": f"The model {payload['model']} does not exist"}})
        return httpx.Response(200, json=bodies.openai(text=ANSWERS.get(prompt, "?"), model=payload["model"]))
    return handler


def blocking_or_streamed(fake_api, body, events, done=True):
    """Answer blocking calls with a JSON body and streaming calls with events."""
    def handler(request):
        if json.loads(request.content).get("stream"):
            return httpx.Response(
                200,
                content=fake_api.sse_content(events, done),
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(200, json=body)
    return handler


class TestComplete:
    """Test single completions."""

    @pytest.mark.asyncio
    async def test_default_provider(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies))

        result = await gateway.complete("1+1?")

        assert result.text == "2"
        assert result.provider == "openai"
        assert fake_api.body()["model"] == "gpt-4o-mini"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_routes_by_model(self, gateway, fake_api, bodies):
        fake_api.route("/v1/messages", json=bodies.anthropic(text="Bonjour"))

        result = await gateway.complete(
            [ChatMessage.system("Answer in French."), ChatMessage.user("Hello")],
            GenerationOptions(model="claude-3-5-sonnet-latest"),
        )

        assert result.text == "Bonjour"
        assert result.provider == "anthropic"
        assert result.requested_model == "claude-3-5-sonnet-latest"
        assert fake_api.body()["system"] == "Answer in French."
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_explicit_provider(self, gateway, fake_api, bodies):
        fake_api.route("/api/chat", json=bodies.ollama(text="local"))

        result = await gateway.complete("hi", provider="ollama")

        assert result.text == "local"
        assert result.provider == "ollama"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_unknown_provider(self, gateway):
        with pytest.raises(ProviderNotFoundError):
            await gateway.complete("hi", provider="bedrock")

    @pytest.mark.asyncio
    async def test_errors_propagate(self, gateway, fake_api):
        fake_api.route("/v1/chat/completions", status=500, json={"error": {"message": "internal"}})

        with pytest.raises(ProviderError) as exc_info:
            await gateway.complete("hi")

        assert exc_info.value.status_code == 500
        assert exc_info.value.provider == "openai"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_unsupported_stop_on_search_provider(self, gateway, fake_api):
        with pytest.raises(UnsupportedOptionError):
            await gateway.complete(
                "hi", GenerationOptions(model="llama-3.1-sonar-small-128k-online", stop=["END"])
            )
        assert fake_api.requests == []


class TestStream:
    """Test streaming through the gateway."""

    @pytest.mark.asyncio
    async def test_stream_collects_to_full_text(self, gateway, fake_api):
        fake_api.ndjson("/api/chat", [
            {"model": "llama3.2", "message": {"content": "Rayleigh"}, "done": False},
            {"model": "llama3.2", "message": {"content": " scattering"}, "done": False},
            {"model": "llama3.2", "message": {"content": ""}, "done": True, "done_reason": "stop",
             "prompt_eval_count": 12, "eval_count": 2},
        ])

        result = await collect_stream(
            gateway.stream("Why is the sky blue?", GenerationOptions(model="llama3.2")),
            requested_model="llama3.2",
        )

        assert result.text == "Rayleigh scattering"
        assert result.usage.output_tokens == 2
        assert result.provider == "ollama"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_openai_stream_matches_blocking_call(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", blocking_or_streamed(
            fake_api,
            bodies.openai(text="Hello there", prompt_tokens=12, completion_tokens=5),
            [
                {"id": "chatcmpl-123", "model": "gpt-4o-mini-2024-07-18",
                 "choices": [{"index": 0, "delta": {"content": "Hello"}, "finish_reason": None}]},
                {"id": "chatcmpl-123", "model": "gpt-4o-mini-2024-07-18",
                 "choices": [{"index": 0, "delta": {"content": " there"}, "finish_reason": None}]},
                {"id": "chatcmpl-123", "model": "gpt-4o-mini-2024-07-18",
                 "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
                {"id": "chatcmpl-123", "model": "gpt-4o-mini-2024-07-18", "choices": [],
                 "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17}},
            ],
        ))
        options = GenerationOptions(model="gpt-4o-mini", temperature=0, seed=7)

        blocking = await gateway.complete("Say hello", options)
        streamed = await collect_stream(gateway.stream("Say hello", options), requested_model="gpt-4o-mini")

        assert fake_api.body(-1)["stream_options"] == {"include_usage": True}
        assert streamed.text == blocking.text
        assert streamed.usage == blocking.usage
        assert streamed.finish_reason == blocking.finish_reason
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_anthropic_stream_matches_blocking_call(self, gateway, fake_api, bodies):
        fake_api.route("/v1/messages", blocking_or_streamed(
            fake_api,
            bodies.anthropic(text="Hello there", input_tokens=10, output_tokens=4),
            [
                ("message_start", {"type": "message_start", "message": {
                    "id": "msg_123", "model": "claude-3-5-sonnet-20241022",
                    "usage": {"input_tokens": 10, "output_tokens": 1},
                }}),
                ("content_block_delta", {"type": "content_block_delta", "index": 0,
                                         "delta": {"type": "text_delta", "text": "Hello"}}),
                ("content_block_delta", {"type": "content_block_delta", "index": 0,
                                         "delta": {"type": "text_delta", "text": " there"}}),
                ("message_delta", {"type": "message_delta",
                                   "delta": {"stop_reason": "end_turn", "stop_sequence": None},
                                   "usage": {"output_tokens": 4}}),
                ("message_stop", {"type": "message_stop"}),
            ],
            done=False,
        ))
        options = GenerationOptions(model="claude-3-5-sonnet-latest", temperature=0)

        blocking = await gateway.complete("Say hello", options)
        streamed = await collect_stream(gateway.stream("Say hello", options))

        assert streamed.text == blocking.text
        assert streamed.usage == blocking.usage
        assert streamed.finish_reason == blocking.finish_reason
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_stream_transport_failure(self, gateway, fake_api):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_api.route("/api/chat", handler)

        with pytest.raises(TransportError):
            async for _ in gateway.stream("hi", provider="ollama"):
                pass
        await gateway.aclose()


class TestBatch:
    """Test N messages against one model."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies))

        results = await gateway.batch(["1+1?", "2+2?", "3+3?"], model="gpt-4o-mini")

        assert len(results) == 3
        assert [r.key for r in results] == ["1+1?", "2+2?", "3+3?"]
        assert [r.result.text for r in results] == ["2", "4", "6"]
        assert all(r.result.text for r in results)
        assert len(fake_api.requests) == 3
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_partial_failure(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies, fail_on={"2+2?"}))

        results = await gateway.batch(["1+1?", "2+2?", "3+3?"], model="gpt-4o-mini")

        assert [r.ok for r in results] == [True, False, True]
        assert isinstance(results[1].error, ProviderError)
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_warm_up_result_discarded(self, gateway, fake_api, bodies):
        fake_api.route("/api/chat", lambda r: httpx.Response(200, json=bodies.ollama(
            text=ANSWERS.get(json.loads(r.content)["messages"][-1]["content"], "?"),
        )))

        results = await gateway.batch(["1+1?", "2+2?"], model="llama3.2", warm_up=True)

        assert len(fake_api.requests) == 3
        assert fake_api.body(0)["messages"][-1]["content"] == "Hello"
        assert [r.result.text for r in results] == ["2", "4"]
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_failed_warm_up_does_not_abort(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies, fail_on={"Hello"}))

        results = await gateway.batch(["1+1?"], model="gpt-4o-mini", warm_up=True)

        assert results[0].result.text == "2"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_empty_batch_skips_warm_up(self, gateway, fake_api, bodies):
        fake_api.route("/api/chat", json=bodies.ollama())

        results = await gateway.batch([], model="llama3.2", warm_up=True)

        assert results == []
        assert fake_api.requests == []
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_conversations_as_items(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies))

        results = await gateway.batch([
            [ChatMessage.system("Be terse."), ChatMessage.user("1+1?")],
            ChatMessage.user("2+2?"),
        ])

        assert [r.key for r in results] == ["1+1?", "2+2?"]
        assert [r.result.text for r in results] == ["2", "4"]
        await gateway.aclose()


class TestCompare:
    """Test one message against N models."""

    @pytest.mark.asyncio
    async def test_invalid_model_left_out(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies, fail_on={"gpt-bogus"}))
        fake_api.route("/v1/messages", json=bodies.anthropic(text="2"))

        comparison = await gateway.compare("1+1?", ["gpt-4o-mini", "claude-3-5-sonnet-latest", "gpt-bogus"])

        assert set(comparison) == {"gpt-4o-mini", "claude-3-5-sonnet-latest"}
        assert comparison["gpt-4o-mini"].text == "2"
        assert comparison["claude-3-5-sonnet-latest"].provider == "anthropic"
        assert isinstance(comparison.errors["gpt-bogus"], ProviderError)
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_unsupported_option_isolated(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies))

        comparison = await gateway.compare(
            "1+1?",
            ["gpt-4o-mini", "llama-3.1-sonar-small-128k-online"],
            GenerationOptions(stop=["\n"]),
        )

        assert list(comparison) == ["gpt-4o-mini"]
        assert isinstance(comparison.errors["llama-3.1-sonar-small-128k-online"], UnsupportedOptionError)
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_duplicate_models_called_once(self, gateway, fake_api, bodies):
        fake_api.route("/v1/chat/completions", openai_echo(bodies))

        comparison = await gateway.compare("1+1?", ["gpt-4o-mini", "gpt-4o-mini"])

        assert len(comparison) == 1
        assert len(fake_api.requests) == 1
        await gateway.aclose()


class TestMetadata:
    """Test metadata extraction through the gateway."""

    @pytest.mark.asyncio
    async def test_openai_metadata(self, gateway, fake_api, bodies):
        fake_api.route(
            "/v1/chat/completions",
            json=bodies.openai(prompt_tokens=1000, completion_tokens=1000),
            headers={"x-request-id": "req-1"},
        )

        metadata = await gateway.metadata("hi")

        assert metadata["http_status"] == 200
        assert metadata["http_headers"]["x-request-id"] == "req-1"
        assert metadata["input_tokens"] == 1000
        assert metadata["total_tokens"] == 2000
        assert metadata["cost_is_estimate"] is True
        assert metadata["estimated_cost_usd"] == pytest.approx(0.00075)
        assert metadata["system_fingerprint"] == "fp_abc"
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_pricing_overrides_from_config(self, gateway_config, fake_api, bodies):
        config = type(gateway_config)(
            default_provider="openai",
            providers=gateway_config.providers,
            routing=gateway_config.routing,
            pricing={"openai": {"gpt-4o-mini*": {"input": 1, "output": 1}}},
        )
        gateway = ChatGateway(config, transport=fake_api.transport)
        fake_api.route("/v1/chat/completions", json=bodies.openai(prompt_tokens=1_000_000, completion_tokens=0))

        metadata = await gateway.metadata("hi")

        assert metadata["estimated_cost_usd"] == pytest.approx(1.0)
        await gateway.aclose()

    def test_negative_pricing_in_config(self, gateway_config):
        config = type(gateway_config)(
            default_provider="openai",
            providers=gateway_config.providers,
            pricing={"openai": {"gpt-4o-mini*": {"input": -0.15, "output": 0.6}}},
        )

        with pytest.raises(GatewayConfigError):
            ChatGateway(config)

    @pytest.mark.asyncio
    async def test_ollama_throughput(self, gateway, fake_api, bodies):
        fake_api.route("/api/chat", json=bodies.ollama())

        metadata = await gateway.metadata("hi", GenerationOptions(model="llama3.2"))

        assert metadata["provider"] == "ollama"
        assert metadata["generate_tokens_per_second"] == pytest.approx(20.0)
        await gateway.aclose()


class TestDiscovery:
    """Test model listing and health checks."""

    @pytest.mark.asyncio
    async def test_list_models(self, gateway, fake_api):
        fake_api.route("/v1/models", json={"data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}]})
        fake_api.route("/api/tags", json={"models": [{"name": "llama3.2", "size": 2019393189}]})

        openai_models = await gateway.list_models()
        ollama_models = await gateway.list_models("ollama")
        anthropic_models = await gateway.list_models("anthropic")

        assert [m["id"] for m in openai_models] == ["gpt-4o", "gpt-4o-mini"]
        assert ollama_models[0]["name"] == "llama3.2"
        assert any(m["id"].startswith("claude-3") for m in anthropic_models)
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_health_check(self, gateway, fake_api):
        fake_api.route("/v1/models", json={"data": []})
        fake_api.route("/api/tags", status=500, json={"error": "down"})

        health = await gateway.health_check()

        assert set(health) == {"openai", "anthropic", "ollama", "mistral", "perplexity"}
        assert health["openai"]["healthy"]
        assert not health["ollama"]["healthy"]
        assert health["perplexity"]["healthy"]
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_context_manager_closes_connections(self, gateway_config, fake_api, bodies):
        fake_api.route("/v1/chat/completions", json=bodies.openai())

        async with ChatGateway(gateway_config, transport=fake_api.transport) as gateway:
            await gateway.complete("hi")
            assert gateway.registry.get_provider("openai").is_connected

        assert not gateway.registry.get_provider("openai").is_connected

    def test_from_config_file(self, tmp_path):
        path = tmp_path / "gateways.yaml"
        path.write_text(
            "default_provider: local\n"
            "max_concurrency: 2\n"
            "providers:\n"
            "  - type: ollama\n"
            "    name: local\n"
        )

        gateway = ChatGateway.from_config_file(str(path))

        assert gateway.config.max_concurrency == 2
        assert [p["name"] for p in gateway.list_providers()] == ["local"]
