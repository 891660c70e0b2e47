"""
OpenAI-compatible chat-completions client used by the default collaborators.
"""

import os
import json
import logging
import asyncio
import random
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    # dotenv not available, use environment variables directly
    pass


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class ChatCompletionError(RuntimeError):
    """The chat endpoint could not produce a usable response."""


# ----------------------------------------------------------------------------
# HTTP helpers with retry/backoff and concurrency limiting
# ----------------------------------------------------------------------------

# Global semaphore to limit concurrent chat API requests
_DEFAULT_MAX_CONCURRENCY = int(os.getenv("TOT_MAX_CONCURRENCY", "3"))
_CHAT_SEMAPHORE = asyncio.Semaphore(_DEFAULT_MAX_CONCURRENCY)

_RETRY_STATUSES = (429, 500, 502, 503, 504)


def _parse_retry_after_seconds(retry_after_header: Optional[str]) -> Optional[float]:
    """Parse Retry-After header to seconds, if possible."""
    if not retry_after_header:
        return None
    try:
        return float(retry_after_header.strip())
    except ValueError:
        return None


def _backoff_seconds(attempt: int, backoff_base: float, backoff_factor: float, backoff_max: float) -> float:
    base_sleep = min(backoff_max, backoff_base * (backoff_factor ** (attempt - 1)))
    jitter = random.uniform(0, base_sleep * 0.25)
    return base_sleep + jitter


async def http_post_json_with_retries(
    session: aiohttp.ClientSession,
    url: str,
    headers: Dict[str, str],
    data: Dict[str, Any],
    *,
    timeout_total: int = 30,
    max_attempts: int = 5,
    backoff_base: float = 0.5,
    backoff_factor: float = 2.0,
    backoff_max: float = 20.0,
    retry_statuses: tuple = _RETRY_STATUSES,
    log_context: str = ""
) -> Dict[str, Any]:
    """POST JSON with retries, exponential backoff, and a concurrency guard.

    Retries on network errors, timeouts, and retryable HTTP statuses like 429/5xx.
    Respects Retry-After header when present (seconds).
    """
    async with _CHAT_SEMAPHORE:
        last_error: Optional[Exception] = None
        for attempt in range(1, max_attempts + 1):
            try:
                async with session.post(
                    url,
                    headers=headers,
                    json=data,
                    timeout=aiohttp.ClientTimeout(total=timeout_total)
                ) as response:
                    if response.status == 200:
                        return await response.json()
                    error_text = await response.text()
                    status = response.status
                    logger.warning(f"    ❌ {log_context}HTTP {status} - {error_text[:500]}")
                    if status in retry_statuses and attempt < max_attempts:
                        parsed_retry_after = _parse_retry_after_seconds(response.headers.get("Retry-After"))
                        sleep_s = parsed_retry_after if parsed_retry_after is not None else _backoff_seconds(attempt, backoff_base, backoff_factor, backoff_max)
                        logger.info(f"    ⏳ {log_context}Retrying in {sleep_s:.2f}s (attempt {attempt}/{max_attempts})")
                        await asyncio.sleep(max(0.05, sleep_s))
                        continue
                    raise ChatCompletionError(f"HTTP {status} - {error_text}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < max_attempts:
                    sleep_s = _backoff_seconds(attempt, backoff_base, backoff_factor, backoff_max)
                    logger.info(f"    ⏳ {log_context}Transient error: {e}. Retrying in {sleep_s:.2f}s (attempt {attempt}/{max_attempts})")
                    await asyncio.sleep(max(0.05, sleep_s))
                    continue
                raise ChatCompletionError(f"{log_context}request failed: {e}") from e
        if last_error:
            raise ChatCompletionError(f"{log_context}request failed: {last_error}") from last_error
        raise ChatCompletionError("Request failed after retries without specific error")


def extract_message_content(result: Dict[str, Any]) -> str:
    """Pull the assistant text out of a chat-completions payload."""
    if "choices" not in result or not result["choices"]:
        raise ChatCompletionError("No choices in chat response")
    choice0 = result["choices"][0]
    # Robustly extract content across possible payload shapes
    message = choice0.get("message") or {}
    content = message.get("content")
    if not content:
        content = choice0.get("text")
    if not content:
        delta = choice0.get("delta") or {}
        content = delta.get("content")
    if not content:
        raise ChatCompletionError("Chat response has no content")
    return content


class ChatCompletionsClient:
    """Async client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, max_retries: int = 2, timeout_total: int = 30):
        self.api_key = api_key or os.getenv("OPEN_API_KEY")
        if not self.api_key:
            raise ValueError("OPEN_API_KEY environment variable is required")
        self.base_url = (base_url or os.getenv("OPEN_API_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.max_retries = max_retries
        self.timeout_total = timeout_total
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "ChatCompletionsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    @staticmethod
    def _messages(system: Optional[str], prompt: str) -> List[Dict[str, str]]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def complete(self, prompt: str, *, system: Optional[str] = None, model: str, temperature: float, max_tokens: int, log_context: str = "") -> str:
        """Send one non-streaming chat request and return the reply text."""
        session = await self._get_session()
        data = {
            "model": model,
            "messages": self._messages(system, prompt),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.info(f"    🌐 POST /chat/completions ({log_context or 'chat'})")
        logger.debug(f"    Request params: model={model}, temperature={temperature}, max_tokens={max_tokens}, stream=False")

        result = await http_post_json_with_retries(
            session,
            f"{self.base_url}/chat/completions",
            self._headers(),
            data,
            timeout_total=self.timeout_total,
            max_attempts=max(1, int(self.max_retries) + 1),
            log_context=f"{log_context}: " if log_context else ""
        )
        logger.debug(f"    🧾 RAW RESPONSE JSON (truncated): {json.dumps(result)[:2000]}")
        return extract_message_content(result)

    async def stream(self, prompt: str, *, system: Optional[str] = None, model: str, temperature: float, max_tokens: int) -> AsyncIterator[str]:
        """Stream content deltas of one chat request.

        Retries only while establishing the stream; once chunks flow, errors
        propagate to the caller.
        """
        session = await self._get_session()
        data = {
            "model": model,
            "messages": self._messages(system, prompt),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }
        logger.info("    🌐 POST /chat/completions (streaming)")

        max_attempts = max(1, int(self.max_retries) + 1)
        attempt = 1
        started = False
        while attempt <= max_attempts:
            try:
                async with _CHAT_SEMAPHORE:
                    async with session.post(
                        f"{self.base_url}/chat/completions",
                        headers=self._headers(),
                        json=data,
                        timeout=aiohttp.ClientTimeout(total=self.timeout_total * 2)
                    ) as response:
                        if response.status != 200:
                            error_text = await response.text()
                            status = response.status
                            logger.warning(f"    ❌ Chat non-200(stream): {status} - {error_text[:500]}")
                            if status in _RETRY_STATUSES and attempt < max_attempts:
                                parsed_retry_after = _parse_retry_after_seconds(response.headers.get("Retry-After"))
                                sleep_s = parsed_retry_after if parsed_retry_after is not None else _backoff_seconds(attempt, 0.5, 2.0, 20.0)
                                logger.info(f"    ⏳ streaming: Retrying in {sleep_s:.2f}s (attempt {attempt}/{max_attempts})")
                                await asyncio.sleep(max(0.05, sleep_s))
                                attempt += 1
                                continue
                            raise ChatCompletionError(f"Chat API error: {status} - {error_text}")

                        async for line in response.content:
                            line_str = line.decode('utf-8').strip()
                            if not line_str or line_str == "data: [DONE]":
                                continue
                            if not line_str.startswith("data: "):
                                continue
                            try:
                                chunk = json.loads(line_str[6:])
                            except json.JSONDecodeError:
                                continue
                            if "choices" in chunk and chunk["choices"]:
                                delta = chunk["choices"][0].get("delta", {})
                                if delta.get("content"):
                                    started = True
                                    yield delta["content"]
                        return
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if not started and attempt < max_attempts:
                    sleep_s = _backoff_seconds(attempt, 0.5, 2.0, 20.0)
                    logger.info(f"    ⏳ streaming: Transient error {e}; retrying in {sleep_s:.2f}s (attempt {attempt}/{max_attempts})")
                    await asyncio.sleep(max(0.05, sleep_s))
                    attempt += 1
                    continue
                raise ChatCompletionError(f"streaming request failed: {e}") from e
