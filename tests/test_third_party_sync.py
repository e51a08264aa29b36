"""Experimentation sync client over a mocked transport."""
import json

import httpx
import pytest

from featurerev.schemas.feature import FeatureEnvironment, FeatureSnapshot
from featurerev.services.third_party_sync import ExperimentationSyncClient

FEATURE = FeatureSnapshot(
    id="checkout",
    organization="org_1",
    project="web",
    value_type="boolean",
    default_value="false",
    environment_settings={
        "production": FeatureEnvironment(enabled=True),
        "staging": FeatureEnvironment(enabled=False),
    },
)


def _client(handler, token="secret-token"):
    return ExperimentationSyncClient(
        base_url="https://sync.example.com/api/",
        token=token,
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


def test_create_item_posts_feature():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"id": "item_1"})

    assert _client(handler).create_item(FEATURE) == {"id": "item_1"}

    [request] = seen
    assert request.method == "POST"
    assert request.url.path == "/api/items"
    assert request.headers["Authorization"] == "Bearer secret-token"
    body = json.loads(request.content)
    assert body["environments"] == {"production": True, "staging": False}
    assert body["project"] == "web"


def test_update_and_delete_address_the_item():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path))
        return httpx.Response(204)

    client = _client(handler)
    assert client.update_item(FEATURE) == {}
    assert client.delete_item(FEATURE) == {}
    assert seen == [("PUT", "/api/items/org_1/checkout"), ("DELETE", "/api/items/org_1/checkout")]


def test_http_errors_are_raised_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(httpx.HTTPStatusError):
        _client(handler).update_item(FEATURE)
    assert len(calls) == 1


def test_no_authorization_header_without_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    _client(handler, token="").create_item(FEATURE)
    assert "Authorization" not in seen[0].headers
