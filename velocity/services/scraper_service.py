import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from velocity.config import settings
from velocity.models.post import BlogPost, ScrapeResult

logger = logging.getLogger(__name__)

_EMBEDDED_JSON = re.compile(r"\{[\s\S]*\}")
_MAX_UNWRAP_DEPTH = 3

SCRAPE_PROMPT = """Go to {domain} and find their blog. Scrape exactly 60 of the most recent blog posts.

CRITICAL: You MUST collect 60 posts by navigating through multiple pages!

Steps:
1. Go to {domain} and find the blog (try navigation menu, /blog, /articles, /news)
2. Extract posts from the current page (get title and publishDate in YYYY-MM-DD format)
3. PAGINATION - Keep going through pages until you have 60 posts:
   - Click "Next", "Older Posts", page numbers (2, 3, 4...), or "Load More" buttons
   - If infinite scroll, scroll to bottom to load more posts
   - Extract posts from each new page
   - Stop when you reach 60 posts OR no more pages exist
4. Return JSON: {{"blogTitle": "Blog Name", "posts": [{{"title": "Post Title", "publishDate": "2024-12-09"}}]}}

IMPORTANT: Most blogs show 10-20 posts per page, so you'll need to click through 3-6 pages to get 60 posts. Don't stop after the first page!

If no blog found: {{"blogTitle": null, "posts": []}}"""

OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "blogTitle": {"type": "string", "description": "The title of the blog"},
        "posts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "publishDate": {"type": "string"},
                },
            },
        },
    },
}


class ScrapeError(Exception):
    """Terminal scrape failure; the job should be marked failed."""


class ScrapeClientError(ScrapeError):
    """Upstream rejected the request (4xx). Never retried."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class ScrapeServerError(ScrapeError):
    """Upstream 5xx or no response at all. Retried with backoff."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _excerpt(response: httpx.Response, limit: int = 500) -> str:
    return response.text[:limit]


def _decode(raw: Any) -> Any:
    """Turn a string payload into JSON, falling back to the outermost {...} span."""
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        pass
    match = _EMBEDDED_JSON.search(raw)
    if match is None:
        logger.warning("[scrape] no JSON found in result | excerpt=%r", raw[:200])
        return None
    try:
        return json.loads(match.group(0))
    except ValueError:
        logger.warning("[scrape] embedded JSON did not parse | excerpt=%r", raw[:200])
        return None


def _to_post(item: Any) -> BlogPost | None:
    if not isinstance(item, dict):
        return None
    title = item.get("title") or ""
    publish_date = item.get("publishDate") or item.get("publish_date") or ""
    return BlogPost(title=str(title), publish_date=str(publish_date))


def dedupe_posts(posts: list[BlogPost]) -> list[BlogPost]:
    seen: set[tuple[str, str]] = set()
    unique: list[BlogPost] = []
    for post in posts:
        key = (post.title, post.publish_date)
        if key in seen:
            continue
        seen.add(key)
        unique.append(post)
    return unique


def normalize_result(raw: Any) -> ScrapeResult:
    """
    Coerce the agent's `result` field into a ScrapeResult. Accepts a plain object,
    a JSON string, JSON embedded in prose, or any of those wrapped in a nested
    `result` key. Anything else is treated as "nothing found".
    """
    payload = _decode(raw)
    for _ in range(_MAX_UNWRAP_DEPTH):
        if isinstance(payload, dict) and "result" in payload and "posts" not in payload:
            logger.debug("[scrape] unwrapping nested result")
            payload = _decode(payload["result"])
        else:
            break

    if isinstance(payload, list):
        items, title = payload, None
    elif isinstance(payload, dict):
        items = payload.get("posts")
        title = payload.get("blogTitle") or payload.get("blog_title") or None
        if not isinstance(items, list):
            items = []
    else:
        if payload is not None:
            logger.warning("[scrape] unexpected result type | type=%s", type(payload).__name__)
        return ScrapeResult()

    posts = [post for post in (_to_post(item) for item in items) if post is not None]
    return ScrapeResult(title=str(title) if title else None, posts=dedupe_posts(posts))


class ScraperService:
    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.ANCHOR_API_KEY
        self._api_url = api_url or settings.ANCHOR_API_URL
        self._timeout = timeout if timeout is not None else settings.SCRAPE_TIMEOUT_SECONDS
        self._max_retries = max_retries if max_retries is not None else settings.SCRAPE_MAX_RETRIES
        self._base_delay = (
            base_delay if base_delay is not None else settings.SCRAPE_BASE_DELAY_SECONDS
        )
        self._transport = transport
        self._sleep = sleep

    def _build_request(self, domain: str) -> dict[str, Any]:
        target_url = domain if domain.startswith("http") else f"https://{domain}"
        return {
            "prompt": SCRAPE_PROMPT.format(domain=domain),
            "url": target_url,
            "agent": "browser-use",
            "provider": "groq",
            "model": "openai/gpt-oss-120b",
            "detect_elements": True,
            "human_intervention": False,
            "max_steps": 200,
            "highlight_elements": False,
            "output_schema": OUTPUT_SCHEMA,
        }

    async def _perform_task(self, domain: str) -> Any:
        """One attempt. Returns the raw `data.result` field of a 2xx response."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._api_url,
                    json=self._build_request(domain),
                    headers={"anchor-api-key": self._api_key},
                )
        except httpx.HTTPError as exc:
            logger.error("[scrape] network error | domain=%s | error=%s", domain, exc)
            raise ScrapeServerError(f"Failed to connect to Anchor Browser API: {exc}") from exc

        logger.info("[scrape] response | domain=%s | status=%d", domain, response.status_code)
        if response.status_code >= 500:
            raise ScrapeServerError(
                f"Anchor Browser server error ({response.status_code}): {_excerpt(response)}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            logger.error(
                "[scrape] client error | domain=%s | status=%d | body=%s",
                domain, response.status_code, _excerpt(response),
            )
            raise ScrapeClientError(
                f"Anchor Browser API client error: {response.status_code}. "
                "Please check your request parameters.",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            logger.warning("[scrape] response body is not JSON | domain=%s", domain)
            return None
        data = body.get("data") if isinstance(body, dict) else None
        return data.get("result") if isinstance(data, dict) else None

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "[scrape] attempt %d/%d failed, retrying in %.0fs | error=%s",
            retry_state.attempt_number,
            self._max_retries,
            retry_state.next_action.sleep if retry_state.next_action else 0,
            exc,
        )

    async def fetch_posts(self, domain: str) -> ScrapeResult:
        """
        Scrape a domain's recent blog posts. Retries 5xx/network failures with
        exponential backoff; 4xx and missing credentials fail immediately.
        """
        if not self._api_key:
            raise ScrapeError("ANCHOR_API_KEY environment variable is not set")
        if self._max_retries < 1:
            raise ScrapeError(
                f"Failed to scrape {domain} after {self._max_retries} attempts. "
                "Anchor Browser service may be experiencing issues."
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._base_delay),
            retry=retry_if_exception_type(ScrapeServerError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        logger.info("[scrape] starting | domain=%s", domain)
        async for attempt in retrying:
            with attempt:
                raw = await self._perform_task(domain)

        result = normalize_result(raw)
        logger.info(
            "[scrape] done | domain=%s | title=%r | posts=%d",
            domain, result.title, len(result.posts),
        )
        return result
