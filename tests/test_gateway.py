import json

import httpx
import pytest

from fitcoach.errors import MalformedResponseError, QuotaExhaustedError, RateLimitedError, TransportError
from fitcoach.gateway import create_gateway
from fitcoach.gateway.completions_gateway import CompletionsGateway
from fitcoach.gateway.function_gateway import FunctionGateway
from fitcoach.models import ContextBundle, Message

TRANSCRIPT = (
    Message(role="assistant", content="Hi! I'm your coach."),
    Message(role="user", content="What should I eat today?"),
)
BUNDLE = ContextBundle(
    profile={"goal": "lose_weight"},
    recent_workouts=[],
    recent_meals=[{"date": "2026-10-17", "total_calories": 700, "total_protein": 35}],
)


def _function_gateway(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FunctionGateway(url="https://fn.example/ai-chat", api_key="anon", access_token="jwt", client=client)


def _completions_gateway(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CompletionsGateway(url="https://llm.example/v1/chat/completions", api_key="sk-test",
                              model="test-model", client=client)


@pytest.mark.asyncio
async def test_function_gateway_posts_transcript_and_context():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"message": "Try a protein-rich salad."})

    reply = await _function_gateway(handler).send(TRANSCRIPT, BUNDLE)

    assert reply == "Try a protein-rich salad."
    assert seen["auth"] == "Bearer jwt"
    assert seen["body"]["messages"] == [
        {"role": "assistant", "content": "Hi! I'm your coach."},
        {"role": "user", "content": "What should I eat today?"},
    ]
    assert seen["body"]["userProfile"] == {"goal": "lose_weight"}
    assert seen["body"]["recentWorkouts"] == []
    assert len(seen["body"]["recentMeals"]) == 1


@pytest.mark.asyncio
async def test_429_is_rate_limited_with_backend_text():
    gateway = _function_gateway(lambda request: httpx.Response(429, json={"error": "Rate limits exceeded."}))

    with pytest.raises(RateLimitedError) as exc_info:
        await gateway.send(TRANSCRIPT, BUNDLE)

    assert exc_info.value.kind == "rateLimited"
    assert exc_info.value.message == "Rate limits exceeded."


@pytest.mark.asyncio
async def test_402_is_quota_exhausted():
    gateway = _function_gateway(lambda request: httpx.Response(402, json={}))

    with pytest.raises(QuotaExhaustedError) as exc_info:
        await gateway.send(TRANSCRIPT, BUNDLE)

    assert exc_info.value.message == "AI credits depleted. Please add credits to continue."


@pytest.mark.asyncio
async def test_other_status_is_transport_error():
    gateway = _function_gateway(lambda request: httpx.Response(500, json={"error": "AI gateway error"}))

    with pytest.raises(TransportError) as exc_info:
        await gateway.send(TRANSCRIPT, BUNDLE)

    assert exc_info.value.message == "AI gateway error"


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        await _function_gateway(handler).send(TRANSCRIPT, BUNDLE)


@pytest.mark.asyncio
async def test_error_field_on_success_is_malformed():
    gateway = _function_gateway(lambda request: httpx.Response(200, json={"error": "LOVABLE_API_KEY is not configured"}))

    with pytest.raises(MalformedResponseError) as exc_info:
        await gateway.send(TRANSCRIPT, BUNDLE)

    assert "LOVABLE_API_KEY" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"message": ""}, {"other": 1}, ["not", "an", "object"]])
async def test_missing_message_is_malformed(body):
    with pytest.raises(MalformedResponseError):
        await _function_gateway(lambda request: httpx.Response(200, json=body)).send(TRANSCRIPT, BUNDLE)


@pytest.mark.asyncio
async def test_invalid_json_is_malformed():
    gateway = _function_gateway(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(MalformedResponseError):
        await gateway.send(TRANSCRIPT, BUNDLE)


@pytest.mark.asyncio
async def test_completions_gateway_folds_context_into_system_prompt():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "Eat more greens."}}]})

    reply = await _completions_gateway(handler).send(TRANSCRIPT, BUNDLE)

    assert reply == "Eat more greens."
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["stream"] is False
    system, *rest = seen["body"]["messages"]
    assert system["role"] == "system"
    assert "- Goal: lose_weight" in system["content"]
    assert rest[-1] == {"role": "user", "content": "What should I eat today?"}


@pytest.mark.asyncio
async def test_completions_upstream_429_uses_coach_text():
    gateway = _completions_gateway(lambda request: httpx.Response(429, json={"error": {"message": "quota"}}))

    with pytest.raises(RateLimitedError) as exc_info:
        await gateway.send(TRANSCRIPT, BUNDLE)

    assert exc_info.value.message == "Rate limits exceeded. Please try again later."


@pytest.mark.asyncio
async def test_completions_empty_choice_is_malformed():
    gateway = _completions_gateway(lambda request: httpx.Response(200, json={"choices": []}))

    with pytest.raises(MalformedResponseError):
        await gateway.send(TRANSCRIPT, BUNDLE)


def test_completions_gateway_requires_api_key(monkeypatch):
    from fitcoach.config import Config
    monkeypatch.setattr(Config, "COMPLETIONS_API_KEY", None)

    with pytest.raises(ValueError):
        CompletionsGateway(api_key=None)


def test_create_gateway_rejects_unknown_type():
    with pytest.raises(ValueError):
        create_gateway("carrier-pigeon")


def test_create_gateway_function():
    gateway = create_gateway("function", access_token="jwt")
    assert isinstance(gateway, FunctionGateway)
    assert gateway.access_token == "jwt"
