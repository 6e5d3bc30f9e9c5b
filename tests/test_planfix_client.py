"""
Tests for the Planfix REST client: request shape, error mapping and retries.
"""
from __future__ import annotations

import json

import httpx
import pytest

from planfix_mcp.planfix_client import PlanfixApiError, PlanfixClient, PlanfixError, contact_url


def make_client(handler, retries: int = 1) -> PlanfixClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = PlanfixClient(http_client, base_url="https://acme.planfix.com/rest", token="secret", retries=retries)
    client.backoff_base = 0.0
    return client


def test_contact_url() -> None:
    assert contact_url("acme", 12) == "https://acme.planfix.com/contact/12"
    assert contact_url("acme", 0) == "https://acme.planfix.com/contact/0"


@pytest.mark.asyncio
async def test_request_sends_json_with_bearer_token() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": "success", "contacts": []})

    client = make_client(handler)
    data = await client.request(path="contact/list", body={"offset": 0})

    assert data == {"result": "success", "contacts": []}
    assert seen == {
        "method": "POST",
        "url": "https://acme.planfix.com/rest/contact/list",
        "auth": "Bearer secret",
        "body": {"offset": 0},
    }


@pytest.mark.asyncio
async def test_fail_body_raises_api_error() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"result": "fail", "code": 8000, "error": "Wrong filter"})

    client = make_client(handler)
    with pytest.raises(PlanfixApiError, match="Wrong filter"):
        await client.request(path="contact/list", body={})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_client_error_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"result": "fail", "error": "Token is invalid"})

    client = make_client(handler, retries=3)
    with pytest.raises(PlanfixApiError) as exc_info:
        await client.request(path="contact/list", body={})
    assert exc_info.value.status_code == 401
    assert str(exc_info.value) == "Token is invalid"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_server_error_is_retried_then_succeeds() -> None:
    responses = [
        httpx.Response(502, text="bad gateway"),
        httpx.Response(200, json={"contacts": [{"id": 1}]}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client = make_client(handler, retries=1)
    data = await client.request(path="contact/list", body={})
    assert data == {"contacts": [{"id": 1}]}


@pytest.mark.asyncio
async def test_server_error_exhausts_retries() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, json={"error": "Internal"})

    client = make_client(handler, retries=2)
    with pytest.raises(PlanfixApiError) as exc_info:
        await client.request(path="contact/list", body={})
    assert exc_info.value.status_code == 500
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_transport_error_becomes_planfix_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, retries=0)
    with pytest.raises(PlanfixError, match="connection refused"):
        await client.request(path="contact/list", body={})


@pytest.mark.asyncio
async def test_non_json_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = make_client(handler)
    with pytest.raises(PlanfixError, match="non-JSON"):
        await client.request(path="contact/list", body={})


@pytest.mark.asyncio
async def test_negative_retries_raise_planfix_error_without_calls() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = make_client(handler, retries=-1)
    with pytest.raises(PlanfixError, match="Unknown Planfix error"):
        await client.request(path="contact/list", body={})
    assert calls == []
