from __future__ import annotations

import json
import time

import httpx
import pytest

from aliyun_api import DEFAULT_CONFIDENCE, AliyunSpeechClient

BASE = "https://backend.test/api"


def _client(handler) -> AliyunSpeechClient:  # noqa: ANN001
    return AliyunSpeechClient(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _token_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200, json={"success": True, "token": "tok-1", "expireTime": int(time.time()) + 3600}
    )


@pytest.mark.asyncio
async def test_validate_credentials_success_caches_token() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.url.path == "/api/get-token"
        return _token_ok(request)

    client = _client(handler)
    result = await client.validate_credentials("app", "id", "secret")

    assert result.success is True
    assert result.token == "tok-1"
    assert seen[0] == {"appKey": "app", "accessKeyId": "id", "accessKeySecret": "secret"}
    assert client.is_token_valid()
    assert client.current_token() == "tok-1"
    await client.aclose()


@pytest.mark.asyncio
async def test_validate_credentials_failure_keeps_error_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            401,
            json={
                "success": False,
                "error": "InvalidAccessKeyId.NotFound",
                "errorType": "credential",
                "code": "InvalidAccessKeyId.NotFound",
            },
        )

    client = _client(handler)
    result = await client.validate_credentials("app", "id", "secret")

    assert result.success is False
    assert result.error_type == "credential"
    assert result.code == "InvalidAccessKeyId.NotFound"
    assert client.current_token() is None
    await client.aclose()


@pytest.mark.asyncio
async def test_validate_credentials_connect_error_is_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    result = await client.validate_credentials("app", "id", "secret")

    assert result.success is False
    assert result.error_type == "network"
    await client.aclose()


@pytest.mark.asyncio
async def test_validate_credentials_non_json_is_network() -> None:
    client = _client(lambda request: httpx.Response(502, text="<html>bad gateway</html>"))
    result = await client.validate_credentials("app", "id", "secret")

    assert result.success is False
    assert result.error_type == "network"
    assert "502" in result.error
    await client.aclose()


def test_token_expiry() -> None:
    client = AliyunSpeechClient(BASE)
    client._token = "tok"
    client._expire_time = 1000

    assert client.is_token_valid(now=999)
    assert not client.is_token_valid(now=1000)

    client.clear_token()
    assert not client.is_token_valid(now=0)


@pytest.mark.asyncio
async def test_recognize_without_token_fails_fast() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    result = await client.recognize_speech(b"\x00\x01")

    assert result.success is False
    assert "Token" in result.error
    assert calls == []
    await client.aclose()


@pytest.mark.asyncio
async def test_recognize_sends_pcm_as_byte_list() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/get-token"):
            return _token_ok(request)
        assert request.url.path == "/api/recognize-audio"
        assert "t" in request.url.params
        assert request.headers["cache-control"] == "no-cache"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "result": "hello world"})

    client = _client(handler)
    await client.validate_credentials("app", "id", "secret")
    result = await client.recognize_speech(b"\x01\x02\xff", sample_rate=16000)

    assert result.success is True
    assert result.result == "hello world"
    assert result.confidence == DEFAULT_CONFIDENCE
    body = bodies[0]
    assert body["audioData"] == [1, 2, 255]
    assert body["format"] == "pcm"
    assert body["sampleRate"] == 16000
    assert body["token"] == "tok-1"
    assert body["appKey"] == "app"
    await client.aclose()


@pytest.mark.asyncio
async def test_recognize_http_error_uses_server_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/get-token"):
            return _token_ok(request)
        return httpx.Response(500, json={"success": False, "error": "NLS busy"})

    client = _client(handler)
    await client.validate_credentials("app", "id", "secret")
    result = await client.recognize_speech(b"\x00")

    assert result.success is False
    assert result.error == "NLS busy"
    await client.aclose()


@pytest.mark.asyncio
async def test_recognize_transport_error_is_structured() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/get-token"):
            return _token_ok(request)
        raise httpx.ReadTimeout("slow", request=request)

    client = _client(handler)
    await client.validate_credentials("app", "id", "secret")
    result = await client.recognize_speech(b"\x00")

    assert result.success is False
    assert result.error
    await client.aclose()


@pytest.mark.parametrize("body", [b"null", b'["oops"]', b'"text"'])
@pytest.mark.asyncio
async def test_validate_credentials_non_object_json_is_structured(body: bytes) -> None:
    client = _client(lambda request: httpx.Response(200, content=body))
    result = await client.validate_credentials("app", "id", "secret")

    assert result.success is False
    assert result.error_type == "network"
    assert client.current_token() is None
    await client.aclose()
