import base64
import json

import pytest
from fastapi.testclient import TestClient

from agriassist import auth as auth_module
from agriassist.main import app
from agriassist.services import llm


def data_uri(mime_type: str, payload: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


class FakeGenerate:
    """Stands in for `llm.generate`: records calls and replays canned replies."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def queue(self, reply):
        if not isinstance(reply, (str, Exception)):
            reply = json.dumps(reply)
        self.replies.append(reply)

    def __call__(self, parts, temperature=0.4, json_output=False):
        self.calls.append({"parts": parts, "temperature": temperature, "json_output": json_output})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    monkeypatch.setattr(auth_module, "DB_PATH", str(tmp_path / "agriassist-test.db"))
    auth_module.init_db()


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeGenerate()
    monkeypatch.setattr(llm, "generate", fake)
    return fake


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth_header(client):
    resp = client.post("/api/auth/register", json={
        "email": "asha@example.com",
        "password": "secret123",
        "confirmPassword": "secret123",
        "displayName": "Asha",
    })
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
