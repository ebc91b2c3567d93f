import asyncio
import json

import httpx
import pytest

from anthropic_service import AnthropicService
from errors import LateApiError, LLMAuthError, LLMRequestError, LLMTransientError
from late_client import LateClient, is_headless_platform
from oauth_cookie import decode_pending, encode_pending


def _anthropic(settings, handler):
    cfg = settings.model_copy(update={"anthropic_api_key": "sk-test", "llm_retry_backoff_base_sec": 0.0})
    return AnthropicService(cfg, transport=httpx.MockTransport(handler))


class TestAnthropicService:
    def test_parses_tool_use(self, settings):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["key"] = request.headers["x-api-key"]
            return httpx.Response(200, json={
                "content": [
                    {"type": "text", "text": "Voy a redactar."},
                    {"type": "tool_use", "id": "tu_1", "name": "generate_content", "input": {"details": "café"}},
                ],
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 12, "output_tokens": 3},
            })

        llm = _anthropic(settings, handler)
        response = asyncio.run(llm.create_message("sys", [{"role": "user", "content": "hola"}], tools=[{"name": "x"}]))

        assert response.stop_reason == "tool_use"
        assert response.text == "Voy a redactar."
        assert response.tool_uses[0]["name"] == "generate_content"
        assert seen["key"] == "sk-test"
        assert seen["body"]["tools"] == [{"name": "x"}]
        assert seen["body"]["system"] == "sys"

    def test_retries_overload(self, settings):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(529, json={"error": "overloaded"})
            return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}], "stop_reason": "end_turn"})

        response = asyncio.run(_anthropic(settings, handler).create_message("s", []))
        assert response.text == "ok"
        assert len(calls) == 2

    def test_overload_exhausted(self, settings):
        llm = _anthropic(settings, lambda request: httpx.Response(503))
        with pytest.raises(LLMTransientError):
            asyncio.run(llm.create_message("s", []))

    def test_auth_error_not_retried(self, settings):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(401)

        with pytest.raises(LLMAuthError):
            asyncio.run(_anthropic(settings, handler).create_message("s", []))
        assert len(calls) == 1

    def test_bad_request(self, settings):
        llm = _anthropic(settings, lambda request: httpx.Response(400, text="messages: invalid"))
        with pytest.raises(LLMRequestError):
            asyncio.run(llm.create_message("s", []))

    def test_missing_key(self, settings):
        with pytest.raises(LLMAuthError):
            asyncio.run(AnthropicService(settings).create_message("s", []))


def _late(settings, handler):
    cfg = settings.model_copy(update={"late_api_key": "late-key"})
    return LateClient(cfg, transport=httpx.MockTransport(handler))


class TestLateClient:
    def test_list_accounts(self, settings):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer late-key"
            assert request.url.path.endswith("/accounts")
            return httpx.Response(200, json={"accounts": [{"_id": "a1", "platform": "facebook"}]})

        accounts = asyncio.run(_late(settings, handler).list_accounts())
        assert accounts == [{"_id": "a1", "platform": "facebook"}]

    def test_create_draft_sends_is_draft(self, settings):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"post": {"_id": "draft-1"}})

        post = asyncio.run(_late(settings, handler).create_draft_post("Hola", [{"platform": "facebook", "accountId": "a1"}]))
        assert post == {"_id": "draft-1"}
        assert seen["isDraft"] is True
        assert seen["timezone"] == "America/Puerto_Rico"
        assert "mediaItems" not in seen

    def test_activate_patches_draft(self, settings):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"post": {"_id": "draft-1"}})

        asyncio.run(_late(settings, handler).activate_draft("draft-1", {"publishNow": True}))
        assert seen["method"] == "PATCH"
        assert seen["path"].endswith("/posts/draft-1")
        assert seen["body"] == {"publishNow": True, "isDraft": False}

    def test_error_carries_status_and_retry_after(self, settings):
        def handler(request):
            return httpx.Response(429, text="slow down", headers={"retry-after": "3"})

        with pytest.raises(LateApiError) as info:
            asyncio.run(_late(settings, handler).list_accounts())
        assert info.value.status == 429
        assert info.value.retry_after == 3.0
        assert info.value.body == "slow down"

    def test_connect_url_headless(self, settings):
        def handler(request):
            assert "headless=true" in str(request.url)
            return httpx.Response(200, json={"authUrl": "https://auth.example/fb"})

        result = asyncio.run(_late(settings, handler).get_connect_url("facebook"))
        assert result == {"auth_url": "https://auth.example/fb", "headless": True}
        assert not is_headless_platform("twitter")


class TestOAuthCookie:
    def test_roundtrip(self):
        token = encode_pending({"platform": "facebook", "step": "select_page", "temp_token": "t-1"}, "secret")
        data = decode_pending(token, "secret")
        assert data["platform"] == "facebook"
        assert data["temp_token"] == "t-1"

    def test_wrong_secret(self):
        token = encode_pending({"platform": "facebook"}, "secret")
        assert decode_pending(token, "other") is None

    def test_garbage(self):
        assert decode_pending("not-a-jwt", "secret") is None
        assert decode_pending(None, "secret") is None
