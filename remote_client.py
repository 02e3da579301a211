# remote_client.py — chat-completion calls with a fixed retry budget

import re
import time
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, ValidationError

import settings
from errors import RemoteCallError, ResponseShapeError, TransportError, describe_error

logger = logging.getLogger(__name__)

ERROR_BODY_PLACEHOLDER = "Failed to read error body"

_CODE_FENCE = re.compile(r"\A```[\w.+-]*[ \t]*\r?\n(.*?)\r?\n?```\Z", re.DOTALL)


# ─── Response shape ───────────────────────────────────────────────────────

class Message(BaseModel):
    content: str
    role: Optional[str] = None


class Choice(BaseModel):
    message: Message


class ChatCompletion(BaseModel):
    choices: List[Choice]


# ─── Client ───────────────────────────────────────────────────────────────

class RemoteCallClient:
    """
    POSTs a JSON payload and returns the decoded JSON body.

    Every failure is retried the same way: network errors, any non-2xx status
    and undecodable bodies alike, with a constant delay between attempts.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        max_attempts: int = settings.MAX_RETRIES,
        retry_delay: float = settings.RETRY_DELAY,
        timeout: float = settings.REQUEST_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.sleep = sleep

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    @staticmethod
    def _error_body(resp) -> str:
        try:
            return resp.text
        except Exception as e:
            logger.debug(f"[REMOTE] Could not read error body: {e!r}")
            return ERROR_BODY_PLACEHOLDER

    def _attempt(self, endpoint: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Any:
        try:
            resp = self.session.post(endpoint, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to {endpoint} failed: {e}") from e

        if not resp.ok:
            raise TransportError(f"API responded with {resp.status_code}: {self._error_body(resp)}")

        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"API returned a body that is not JSON: {e}") from e

    def call(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        attempts_remaining: Optional[int] = None
    ) -> Any:
        if attempts_remaining is None:
            attempts_remaining = self.max_attempts
        try:
            return self._attempt(endpoint, payload, headers or {})
        except Exception as e:
            if attempts_remaining > 1:
                attempt = self.max_attempts - attempts_remaining + 1
                logger.warning(f"[REMOTE] Retrying... ({attempt}/{self.max_attempts}) after: {e}")
                self.sleep(self.retry_delay)
                return self.call(endpoint, payload, headers, attempts_remaining - 1)
            raise RemoteCallError(
                f"API request failed after {self.max_attempts} attempts: {describe_error(e)}"
            ) from e


def secure_fetch_with_retry(
    url: str,
    payload: Dict[str, Any],
    api_key: str,
    client: Optional[RemoteCallClient] = None
) -> Any:
    """POST `payload` to `url` with bearer auth, retrying per the client's budget."""
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    if client is not None:
        return client.call(url, payload, headers=headers)

    client = RemoteCallClient()
    try:
        return client.call(url, payload, headers=headers)
    finally:
        client.close()


# ─── Candidate extraction ─────────────────────────────────────────────────

def strip_code_fence(text: str) -> str:
    """Unwrap a single Markdown fence that encloses the whole text."""
    m = _CODE_FENCE.match(text)
    return m.group(1).strip() if m else text


def extract_candidate(response: Any, strip_fences: bool = True) -> str:
    """
    Pull choices[0].message.content out of a chat-completion response.

    A missing path and an empty string are both ResponseShapeError. Text that
    is only whitespace is returned as "" and left for integrity validation
    to reject.
    """
    try:
        completion = ChatCompletion.model_validate(response)
    except ValidationError as e:
        raise ResponseShapeError(f"Invalid API response structure: {e}") from e

    if not completion.choices:
        raise ResponseShapeError("Invalid API response structure: no choices returned")

    content = completion.choices[0].message.content
    if not content:
        raise ResponseShapeError("Invalid API response structure: empty message content")

    text = content.strip()
    if strip_fences:
        text = strip_code_fence(text)
    return text
