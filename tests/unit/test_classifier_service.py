import json

import httpx
import pytest

from velocity.models.post import TitleClassification
from velocity.services.classifier_service import ClassificationError, ClassifierService, aggregate

TITLES = [
    "How to choose the right SOC 2 automation tool",
    "Announcing our Q4 product release",
    "Top 10 IAM best practices for scaling teams",
]


def _completion(details: list[dict]) -> httpx.Response:
    content = json.dumps({"details": details})
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _service(handler, api_key="xai-key") -> ClassifierService:
    return ClassifierService(
        api_key=api_key,
        api_url="https://xai.test/v1/chat/completions",
        model="grok-test",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


def test_aggregate_percentages():
    details = [
        TitleClassification(TITLES[0], True, "how-to"),
        TitleClassification(TITLES[1], False, "announcement"),
        TitleClassification(TITLES[2], True, "listicle"),
    ]
    result = aggregate(TITLES, details)
    assert result.total_titles == 3
    assert result.aeo_optimized_count == 2
    assert result.non_aeo_count == 1
    assert result.aeo_percentage == 66.7
    assert result.non_aeo_percentage == 33.3
    assert result.aeo_optimized_titles == [TITLES[0], TITLES[2]]
    assert result.non_aeo_titles == [TITLES[1]]


@pytest.mark.asyncio
async def test_classify_success():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content.decode("utf-8"))
        return _completion(
            [
                {"title": TITLES[0], "aeo_optimized": True, "reason": "how-to"},
                {"title": TITLES[1], "aeo_optimized": False, "reason": "announcement"},
                {"title": TITLES[2], "aeo_optimized": True, "reason": "listicle"},
            ]
        )

    result = await _service(handler).classify("example.com", TITLES)

    assert result.aeo_optimized_count == 2
    assert result.details[1].reason == "announcement"
    assert captured["auth"] == "Bearer xai-key"
    assert captured["body"]["model"] == "grok-test"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert TITLES[0] in captured["body"]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_classify_empty_titles_skips_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    result = await _service(handler).classify("example.com", [])
    assert result.total_titles == 0
    assert result.aeo_percentage == 0


@pytest.mark.asyncio
async def test_classify_missing_key_raises():
    with pytest.raises(ClassificationError, match="XAI_API_KEY"):
        await _service(lambda r: _completion([]), api_key="").classify("example.com", TITLES)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429, 500])
async def test_classify_http_error_raises(status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": "nope"})

    with pytest.raises(ClassificationError):
        await _service(handler).classify("example.com", TITLES)


@pytest.mark.asyncio
async def test_classify_invalid_content_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "not json"}}]})

    with pytest.raises(ClassificationError):
        await _service(handler).classify("example.com", TITLES)


@pytest.mark.asyncio
async def test_classify_timeout_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ClassificationError, match="Failed to connect"):
        await _service(handler).classify("example.com", TITLES)
