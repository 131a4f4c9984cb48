import json
import logging
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

URL_FIELD = "website_url"


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if value[:1] in ("'", '"'):
        value = value[1:]
    if value[-1:] in ("'", '"'):
        value = value[:-1]
    return value.strip()


def _from_json(data: Any) -> str | None:
    if isinstance(data, str):
        return _strip_quotes(data) or None
    if not isinstance(data, dict) or not data:
        return None
    if data.get(URL_FIELD):
        return str(data[URL_FIELD])
    # Some clients send a string as {"0": "e", "1": "x", ...}.
    if all(key.isdigit() for key in data):
        return "".join(str(data[key]) for key in sorted(data, key=int)) or None
    return None


def extract_website_url(body: bytes, content_type: str, query: dict[str, str]) -> str | None:
    """
    Pull the website URL out of a request that may be JSON, a JSON object with
    numeric keys, plain text, a urlencoded form, or only a query parameter.
    """
    text = body.decode("utf-8", errors="replace").strip() if body else ""
    media_type = content_type.split(";")[0].strip().lower()

    website_url: str | None = None
    if text:
        if media_type == "application/x-www-form-urlencoded":
            values = parse_qs(text).get(URL_FIELD)
            website_url = values[0] if values else None
        elif media_type == "application/json" or text[:1] in "{\"[":
            try:
                website_url = _from_json(json.loads(text))
            except ValueError:
                logger.debug("[input] body is not valid JSON, treating as text")
                website_url = _strip_quotes(text) or None
        else:
            website_url = _strip_quotes(text) or None

    if not website_url:
        website_url = query.get(URL_FIELD) or None
    return website_url.strip() if website_url else None


def normalize_domain(website_url: str) -> str:
    """Reduce a URL to its hostname, keeping any www. prefix. Falls back to the raw input."""
    candidate = website_url.strip()
    if not candidate.startswith("http"):
        candidate = f"https://{candidate}"
    try:
        hostname = urlparse(candidate).hostname
    except ValueError:
        hostname = None
    return hostname or website_url.strip()
