import httpx
import pytest
from fastapi.testclient import TestClient

from tutor_relay import forwarder as forwarder_module
from tutor_relay.app import create_app
from tutor_relay.config import RelayConfig


def completion_body(content="Hello", usage=None):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1,
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": usage
        or {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }


class FakeUpstream:
    """Stands in for ``httpx.AsyncClient.post`` and records every call."""

    def __init__(self):
        self.calls = []
        self.status_code = 200
        self.body = completion_body()
        self.raise_exc = None

    def reply(self, status_code, body):
        self.status_code = status_code
        self.body = body

    @property
    def last_payload(self):
        return self.calls[-1]["json"]

    async def post(self, client, url, json=None):  # noqa: A002
        self.calls.append({"url": url, "json": json, "headers": dict(client.headers)})
        if self.raise_exc is not None:
            raise self.raise_exc
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()

    async def fake_post(self, url, json=None):  # noqa: A002
        return await fake.post(self, url, json=json)

    monkeypatch.setattr(forwarder_module.httpx.AsyncClient, "post", fake_post)
    return fake


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        values = {
            "openai_api_key": "sk-test",
            "log_path": str(tmp_path / "logs" / "tutor_relay.jsonl"),
        }
        values.update(overrides)
        return RelayConfig(**values)

    return _make


@pytest.fixture
def make_client(make_config):
    def _make(**overrides):
        return TestClient(create_app(make_config(**overrides)))

    return _make


@pytest.fixture
def client(make_client):
    return make_client()
