import asyncio

import httpx
import pytest

from tutor_relay.app import create_app
from tutor_relay.config import RelayConfig

IMAGE = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"message": ""},
        {"message": "   \n\t"},
        {"message": None, "image": None},
        {"message": "", "image": ""},
        {"conversationHistory": [{"role": "user", "content": "hi"}]},
    ],
)
def test_missing_message_and_image_is_400_without_upstream(client, upstream, body):
    r = client.post("/api/tutor", json=body)
    assert r.status_code == 400
    assert r.json() == {"error": "Message or image is required"}
    assert upstream.calls == []


def test_missing_api_key_is_500(make_client, upstream):
    client = make_client(openai_api_key=None)
    for body in (
        {"message": "What is 2+2?"},
        {"image": IMAGE},
        {"message": "hi", "selectedText": "x", "conversationHistory": []},
    ):
        r = client.post("/api/tutor", json=body)
        assert r.status_code == 500
        assert r.json()["error"].startswith("OpenAI API key not configured")
    assert upstream.calls == []


def test_text_request_uses_text_model(client, upstream):
    r = client.post("/api/tutor", json={"message": "What is 2+2?"})
    assert r.status_code == 200
    payload = upstream.last_payload
    assert payload["model"] == "gpt-4o-mini"
    assert payload["temperature"] == 0.7
    assert payload["max_tokens"] == 500
    assert payload["messages"][0]["role"] == "system"
    assert payload["messages"][-1] == {"role": "user", "content": "What is 2+2?"}


def test_image_request_uses_vision_model_even_without_message(client, upstream):
    r = client.post("/api/tutor", json={"message": "", "image": IMAGE})
    assert r.status_code == 200
    payload = upstream.last_payload
    assert payload["model"] == "gpt-4o"
    last = payload["messages"][-1]
    assert last["role"] == "user"
    assert last["content"][1] == {"type": "image_url", "image_url": {"url": IMAGE}}


def test_history_image_turn_preserved_as_multipart(client, upstream):
    r = client.post(
        "/api/tutor",
        json={
            "message": "Can you explain step 2?",
            "conversationHistory": [
                {"role": "user", "content": "Solve this", "image": IMAGE},
                {"role": "assistant", "content": "Step 1... Step 2..."},
            ],
        },
    )
    assert r.status_code == 200
    messages = upstream.last_payload["messages"]
    assert messages[1] == {
        "role": "user",
        "content": [
            {"type": "text", "text": "Solve this"},
            {"type": "image_url", "image_url": {"url": IMAGE}},
        ],
    }
    assert messages[2] == {"role": "assistant", "content": "Step 1... Step 2..."}


def test_selected_text_reaches_system_prompt(client, upstream):
    client.post(
        "/api/tutor",
        json={"message": "Explain", "selectedText": "mitochondria"},
    )
    system = upstream.last_payload["messages"][0]["content"]
    assert 'selected this text from their PDF: "mitochondria"' in system


def test_success_returns_response_and_usage(client, upstream):
    r = client.post("/api/tutor", json={"message": "What is 2+2?"})
    assert r.status_code == 200
    assert r.json() == {
        "response": "Hello",
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }


def test_authorization_header_and_url(client, upstream):
    client.post("/api/tutor", json={"message": "hi"})
    call = upstream.calls[-1]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["authorization"] == "Bearer sk-test"


@pytest.mark.parametrize(
    "status,expected_status,expected_error",
    [
        (401, 401, "Invalid OpenAI API key"),
        (429, 429, "Rate limit exceeded. Please try again later."),
        (500, 500, "OpenAI service error. Please try again later."),
        (404, 500, "Failed to get AI response"),
        (503, 500, "Failed to get AI response"),
    ],
)
def test_upstream_errors_are_mapped(
    client, upstream, status, expected_status, expected_error
):
    upstream.reply(status, {"error": {"message": "upstream said no"}})
    r = client.post("/api/tutor", json={"message": "hi"})
    assert r.status_code == expected_status
    assert r.json() == {"error": expected_error}


def test_rate_limit_independent_of_body(client, upstream):
    upstream.reply(429, {"error": {"message": "slow down"}})
    for body in ({"message": "a"}, {"image": IMAGE}, {"message": "b", "selectedText": "c"}):
        r = client.post("/api/tutor", json=body)
        assert r.status_code == 429
        assert r.json() == {"error": "Rate limit exceeded. Please try again later."}


def test_details_only_in_development(make_client, upstream):
    upstream.reply(404, {"error": {"message": "The model does not exist"}})

    prod = make_client(environment="production")
    r = prod.post("/api/tutor", json={"message": "hi"})
    assert "details" not in r.json()

    dev = make_client(environment="development")
    r = dev.post("/api/tutor", json={"message": "hi"})
    assert r.status_code == 500
    assert r.json()["details"] == "404 The model does not exist"


def test_transport_error_is_generic_failure(make_client, upstream):
    upstream.raise_exc = httpx.ConnectError("connection refused")
    r = make_client().post("/api/tutor", json={"message": "hi"})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to get AI response"}

    r = make_client(environment="development").post("/api/tutor", json={"message": "hi"})
    assert r.json()["details"] == "connection refused"


def test_missing_usage_is_omitted(client, upstream):
    upstream.reply(
        200,
        {"choices": [{"message": {"role": "assistant", "content": "Hi"}}]},
    )
    r = client.post("/api/tutor", json={"message": "hi"})
    assert r.status_code == 200
    assert r.json() == {"response": "Hi"}


def test_upstream_body_without_choices_is_generic_failure(client, upstream):
    upstream.reply(200, {"object": "chat.completion", "choices": []})
    r = client.post("/api/tutor", json={"message": "hi"})
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to get AI response"


def test_malformed_json_is_400(client, upstream):
    r = client.post(
        "/api/tutor",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request body"
    assert upstream.calls == []


def test_history_must_be_a_list(client, upstream):
    r = client.post(
        "/api/tutor", json={"message": "hi", "conversationHistory": "nope"}
    )
    assert r.status_code == 400
    assert upstream.calls == []


def test_oversized_body_is_413(make_client, upstream):
    client = make_client(max_body_bytes=1024)
    r = client.post("/api/tutor", json={"message": "x", "image": "a" * 2048})
    assert r.status_code == 413
    assert r.json()["error"] == "Request body too large"
    assert upstream.calls == []


def test_chunked_body_without_length_stops_at_limit(make_config, upstream):
    app = create_app(make_config(max_body_bytes=1024))
    total = 200
    pulled = 0
    sent = []

    async def receive():
        nonlocal pulled
        if pulled >= total:
            return {"type": "http.disconnect"}
        pulled += 1
        return {
            "type": "http.request",
            "body": b"a" * 1024,
            "more_body": pulled < total,
        }

    async def send(message):
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/tutor",
        "raw_path": b"/api/tutor",
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"transfer-encoding", b"chunked"),
        ],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    asyncio.run(app(scope, receive, send))

    start = next(m for m in sent if m["type"] == "http.response.start")
    assert start["status"] == 413
    assert pulled < 5
    assert upstream.calls == []


def test_default_body_limit_accepts_large_images(client, upstream):
    assert RelayConfig().max_body_bytes == 10 * 1024 * 1024
    big_image = "data:image/png;base64," + "A" * 5_000_000
    r = client.post("/api/tutor", json={"image": big_image})
    assert r.status_code == 200


def test_request_log_records_outcome(make_client, upstream, tmp_path):
    import json

    client = make_client()
    client.post("/api/tutor", json={"message": "hi"})
    upstream.reply(429, {})
    client.post("/api/tutor", json={"message": "hi", "image": IMAGE})

    log_file = tmp_path / "logs" / "tutor_relay.jsonl"
    records = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert [r["status"] for r in records] == [200, 429]
    assert records[0]["model"] == "gpt-4o-mini"
    assert records[0]["completion_tokens"] == 3
    assert records[1]["has_image"] is True
