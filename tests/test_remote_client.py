import pytest
import requests

import settings
from errors import RemoteCallError, ResponseShapeError, TransportError
from remote_client import (
    ERROR_BODY_PLACEHOLDER,
    RemoteCallClient,
    extract_candidate,
    secure_fetch_with_retry,
)


class DummyResponse:
    def __init__(self, status=200, data=None, text="", broken_body=False):
        self.status_code = status
        self._data = data
        self._text = text
        self._broken_body = broken_body

    @property
    def ok(self):
        return self.status_code < 400

    @property
    def text(self):
        if self._broken_body:
            raise requests.exceptions.ChunkedEncodingError("connection dropped")
        return self._text

    def json(self):
        if self._data is None:
            raise ValueError("No JSON object could be decoded")
        return self._data


class DummySession:
    """Replays a scripted list of responses / exceptions, one per post()."""
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_client(outcomes):
    sleeps = []
    session = DummySession(outcomes)
    return RemoteCallClient(session=session, sleep=sleeps.append), session, sleeps


def test_succeeds_after_two_failures():
    client, session, sleeps = make_client([
        requests.ConnectionError("refused"),
        DummyResponse(503, text="busy"),
        DummyResponse(200, data={"ok": True}),
    ])
    assert client.call("http://api", {"q": 1}) == {"ok": True}
    assert len(session.calls) == 3
    assert sleeps == [settings.RETRY_DELAY, settings.RETRY_DELAY]


def test_always_failing_raises_after_three_attempts():
    client, session, sleeps = make_client([requests.ConnectionError("refused")])
    with pytest.raises(RemoteCallError) as exc:
        client.call("http://api", {"q": 1})
    assert len(session.calls) == 3
    assert len(sleeps) == 2
    assert isinstance(exc.value.__cause__, TransportError)
    assert "after 3 attempts" in str(exc.value)
    assert "Traceback" in str(exc.value)


def test_status_error_carries_body():
    client, _, _ = make_client([DummyResponse(401, text="bad token")])
    with pytest.raises(RemoteCallError) as exc:
        client.call("http://api", {})
    assert "API responded with 401: bad token" in str(exc.value)


def test_unreadable_error_body_degrades_to_placeholder():
    client, _, _ = make_client([DummyResponse(500, broken_body=True)])
    with pytest.raises(RemoteCallError) as exc:
        client.call("http://api", {})
    assert f"API responded with 500: {ERROR_BODY_PLACEHOLDER}" in str(exc.value)


def test_non_json_body_is_retried():
    client, session, sleeps = make_client([
        DummyResponse(200, data=None),
        DummyResponse(200, data={"ok": True}),
    ])
    assert client.call("http://api", {}) == {"ok": True}
    assert len(sleeps) == 1


def test_secure_fetch_sends_bearer_and_payload():
    client, session, _ = make_client([DummyResponse(200, data={"ok": True})])
    payload = {"model": "m", "messages": [], "temperature": 0.2}
    secure_fetch_with_retry("http://api", payload, "s3cret", client=client)
    call = session.calls[0]
    assert call["headers"]["Authorization"] == "Bearer s3cret"
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["json"] == payload
    assert call["timeout"] == settings.REQUEST_TIMEOUT


def test_zero_attempts_rejected():
    with pytest.raises(ValueError):
        RemoteCallClient(session=DummySession([]), max_attempts=0)


# ─── extract_candidate ───────────────────────────────────────────────────

def test_extract_trims_whitespace():
    assert extract_candidate(completion("\n  import os\n  ")) == "import os"


def test_extract_unwraps_code_fence():
    fenced = "```python\nimport os\nprint(os.name)\n```"
    assert extract_candidate(completion(fenced)) == "import os\nprint(os.name)"
    assert extract_candidate(completion(fenced), strip_fences=False) == fenced


@pytest.mark.parametrize("response", [
    {},
    {"choices": []},
    {"choices": [{}]},
    {"choices": [{"message": {}}]},
    {"choices": [{"message": {"content": None}}]},
    ["not", "a", "dict"],
    None,
])
def test_extract_rejects_malformed_shapes(response):
    with pytest.raises(ResponseShapeError):
        extract_candidate(response)


def test_extract_rejects_empty_content():
    with pytest.raises(ResponseShapeError):
        extract_candidate(completion(""))


def test_extract_passes_whitespace_only_content_through_as_empty():
    assert extract_candidate(completion("   \n\t ")) == ""
