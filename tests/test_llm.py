"""Tests for inkverse.llm: HttpLLM against a mocked chat-completions backend."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from inkverse.llm import HttpLLM, LLMError, _parse_stream_line


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


class _FakeStream:
    """Stands in for the async context manager returned by AsyncClient.stream()."""

    def __init__(self, lines: list[str], status: int = 200) -> None:
        self.lines = lines
        self.status_code = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("", request=MagicMock(), response=self)

    async def aiter_lines(self):
        for line in self.lines:
            yield line


def _sse(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


async def _collect(llm: HttpLLM, **kwargs) -> list[str]:
    return [
        chunk async for chunk in llm.stream("muse", "system", [{"role": "user", "content": "hi"}], **kwargs)
    ]


# ---------------------------------------------------------------------------
# complete()
# ---------------------------------------------------------------------------

class TestComplete:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="https://api.groq.com/openai/", api_key="sk-test", model="llama")

    async def test_happy_path(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": '{"action": "none"}'}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.complete("intent_classifier", "classify", "hello")
        assert result == '{"action": "none"}'

    async def test_request_shape(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.complete("summarizer", "sys", "user text", temperature=0.2)
        assert mock_post.call_args[0][0] == "https://api.groq.com/openai/v1/chat/completions"
        sent = mock_post.call_args[1]["json"]
        assert sent["model"] == "llama"
        assert sent["temperature"] == 0.2
        assert "stream" not in sent
        assert sent["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user text"},
        ]
        assert mock_post.call_args[1]["headers"]["Authorization"] == "Bearer sk-test"

    async def test_no_auth_header_without_key(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:8080")
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.complete("muse", "sys", "x")
        assert "Authorization" not in mock_post.call_args[1]["headers"]
        assert "model" not in mock_post.call_args[1]["json"]

    async def test_connect_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ConnectError("refused"))):
            with pytest.raises(LLMError, match="Cannot connect"):
                await llm.complete("muse", "sys", "x")

    async def test_http_status_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response({}, status=429))):
            with pytest.raises(LLMError, match="HTTP 429"):
                await llm.complete("muse", "sys", "x")

    async def test_timeout(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ReadTimeout("slow"))):
            with pytest.raises(LLMError, match="timed out"):
                await llm.complete("muse", "sys", "x")

    async def test_unexpected_format(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response({"results": []}))):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm.complete("muse", "sys", "x")

    async def test_non_json_body(self, llm: HttpLLM) -> None:
        resp = _mock_response({})
        resp.json.side_effect = json.JSONDecodeError("Expecting value", "<html>bad gateway</html>", 0)
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(LLMError, match="non-JSON"):
                await llm.complete("intent_classifier", "sys", "x")

    async def test_transport_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ReadError("connection reset"))):
            with pytest.raises(LLMError, match="LLM request failed"):
                await llm.complete("muse", "sys", "x")


# ---------------------------------------------------------------------------
# stream()
# ---------------------------------------------------------------------------

class TestStream:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:8080", model="llama")

    async def test_yields_deltas_until_done(self, llm: HttpLLM) -> None:
        lines = [_sse("The "), "", ": keep-alive", _sse("city "), _sse("burns."), "data: [DONE]", _sse("late")]
        with patch("httpx.AsyncClient.stream", MagicMock(return_value=_FakeStream(lines))):
            chunks = await _collect(llm)
        assert chunks == ["The ", "city ", "burns."]

    async def test_request_is_streamed(self, llm: HttpLLM) -> None:
        mock_stream = MagicMock(return_value=_FakeStream(["data: [DONE]"]))
        with patch("httpx.AsyncClient.stream", mock_stream):
            await _collect(llm, temperature=0.7)
        method, url = mock_stream.call_args[0]
        assert method == "POST"
        assert url == "http://localhost:8080/v1/chat/completions"
        sent = mock_stream.call_args[1]["json"]
        assert sent["stream"] is True
        assert sent["messages"][0] == {"role": "system", "content": "system"}

    async def test_http_error_becomes_llm_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.stream", MagicMock(return_value=_FakeStream([], status=500))):
            with pytest.raises(LLMError, match="HTTP 500"):
                await _collect(llm)

    async def test_dropped_connection_becomes_llm_error(self, llm: HttpLLM) -> None:
        class _Dropping(_FakeStream):
            async def aiter_lines(self):
                yield _sse("The ")
                raise httpx.RemoteProtocolError("peer closed connection")

        with patch("httpx.AsyncClient.stream", MagicMock(return_value=_Dropping([]))):
            with pytest.raises(LLMError, match="peer closed"):
                await _collect(llm)


class TestParseStreamLine:
    def test_done(self) -> None:
        assert _parse_stream_line("data: [DONE]") is None

    def test_non_data_line(self) -> None:
        assert _parse_stream_line("event: ping") == ""

    def test_malformed_json_skipped(self) -> None:
        assert _parse_stream_line("data: {oops") == ""

    def test_role_only_delta(self) -> None:
        assert _parse_stream_line('data: {"choices": [{"delta": {"role": "assistant"}}]}') == ""
