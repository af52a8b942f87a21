import base64
import hashlib
import hmac
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chatledger.api.routes import router, to_inbound_event
from chatledger.config import Settings, get_settings
from chatledger.deps import get_engine

SECRET = "test-secret"


def sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def make_body(*events) -> bytes:
    return json.dumps({"destination": "bot", "events": list(events)}).encode()


def text_event(text, token="rt-1", user="U-alice", group=None):
    source = {"type": "group", "groupId": group, "userId": user} if group else {"type": "user", "userId": user}
    return {
        "type": "message",
        "replyToken": token,
        "source": source,
        "message": {"type": "text", "id": "1", "text": text},
    }


def make_api(engine, environment):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: Settings(
        line_channel_secret=SECRET, line_channel_access_token="t", environment=environment
    )
    return TestClient(app)


@pytest.fixture
def api(engine):
    return make_api(engine, "development")


@pytest.fixture
def prod_api(engine):
    return make_api(engine, "production")


def test_signed_message_is_processed(prod_api, client):
    body = make_body(text_event("lunch 150"))
    response = prod_api.post("/webhook", content=body, headers={"X-Line-Signature": sign(body)})

    assert response.status_code == 200
    assert response.json() == {"success": True, "processed_events": 1}
    assert client.replies[0][0] == "rt-1"
    assert client.replies[0][1].text.startswith("✅ Recorded")


def test_missing_signature_is_rejected(api, client):
    response = api.post("/webhook", content=make_body(text_event("lunch 150")))
    assert response.status_code == 401
    assert client.replies == []


def test_bad_signature_rejected_in_production(prod_api, client):
    body = make_body(text_event("lunch 150"))
    response = prod_api.post("/webhook", content=body, headers={"X-Line-Signature": sign(body, "wrong")})
    assert response.status_code == 401
    assert client.replies == []


def test_bad_signature_tolerated_in_development(api, client):
    body = make_body(text_event("lunch 150"))
    response = api.post("/webhook", content=body, headers={"X-Line-Signature": "bogus"})
    assert response.status_code == 200
    assert len(client.replies) == 1


def test_several_events_each_get_a_reply(api, client):
    body = make_body(
        text_event("lunch 150", token="a"),
        text_event("/help", token="b", user="U-bob"),
        {"type": "follow", "replyToken": "c", "source": {"type": "user", "userId": "U-carol"}},
    )
    response = api.post("/webhook", content=body, headers={"X-Line-Signature": sign(body)})

    assert response.json()["processed_events"] == 2
    assert sorted(token for token, _ in client.replies) == ["a", "b"]


def test_liveness(api):
    assert api.get("/webhook").status_code == 200


def test_parse_endpoint(api):
    response = api.post("/parse", json={"message": "taxi 50"})
    assert response.json() == {
        "parsed": {"amount": 50.0, "category": "transport", "description": "taxi", "kind": "expense", "date": None},
        "source": "heuristic",
    }

    assert api.post("/parse", json={"message": "hello"}).json() == {"parsed": None, "source": None}


def test_event_conversion():
    event = to_inbound_event(text_event("hi", group="G1"))
    assert event.source_group_id == "G1"
    assert event.text == "hi"

    postback = to_inbound_event(
        {
            "type": "postback",
            "replyToken": "r",
            "source": {"type": "user", "userId": "U1"},
            "postback": {"data": "recent_records"},
        }
    )
    assert postback.type == "postback"
    assert postback.postback_data == "recent_records"

    sticker = text_event("x")
    sticker["message"] = {"type": "sticker"}
    assert to_inbound_event(sticker) is None


@pytest.mark.parametrize("body", [b"[]", b'"x"', b'{"events": "nope"}', b"not json"])
def test_signed_body_that_is_not_an_event_object(prod_api, client, body):
    response = prod_api.post("/webhook", content=body, headers={"X-Line-Signature": sign(body)})
    assert response.status_code == 400
    assert client.replies == []


def test_malformed_event_entries_are_skipped(api, client):
    body = make_body("oops", 42, text_event("lunch 150"))
    response = api.post("/webhook", content=body, headers={"X-Line-Signature": sign(body)})

    assert response.status_code == 200
    assert response.json()["processed_events"] == 1
    assert len(client.replies) == 1
