import json
import logging

import httpx

from velocity.config import settings
from velocity.models.post import ClassificationResult, TitleClassification
from velocity.services.velocity_service import round_half_up

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an AI subsystem that classifies blog post titles as AEO-optimized or not.

AEO = AI Engine Optimization. Titles designed to rank in AI engines (ChatGPT, Perplexity, etc.).

AEO-OPTIMIZED titles match one or more:
1. Directly answers a question ("how", "what", "why", "when", "should", "can", "is X worth it")
2. Solves a task ("how to", "guide", "checklist", "template", "framework", "best", "top X")
3. Targets high-intent queries ("pricing", "alternatives", "vs", "examples", "benchmark")
4. Natural-language phrasing ("explain", "compare", "help me understand")
5. Structured/definitional ("definitions", "playbooks", "step-by-step")

NOT AEO:
- Company updates, announcements
- Fundraising, partnership news
- Product release notes
- Vague thought leadership
- Bland editorial without clear task/query intent

For EACH title, classify as AEO or Not AEO with a brief reason.

Return ONLY valid JSON matching this schema:
{
  "details": [
    {
      "title": "original title",
      "aeo_optimized": true or false,
      "reason": "brief specific reason"
    }
  ]
}"""


class ClassificationError(Exception):
    pass


def _percentage(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round_half_up(part / total * 100, places=1)


def aggregate(titles: list[str], details: list[TitleClassification]) -> ClassificationResult:
    total = len(titles)
    optimized = sum(1 for d in details if d.aeo_optimized)
    non_aeo = max(total - optimized, 0)
    return ClassificationResult(
        total_titles=total,
        aeo_optimized_count=optimized,
        non_aeo_count=non_aeo,
        aeo_percentage=_percentage(optimized, total),
        non_aeo_percentage=_percentage(non_aeo, total),
        details=details,
    )


def _parse_details(content: str) -> list[TitleClassification]:
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise ClassificationError(f"Classifier returned invalid JSON: {exc}") from exc
    raw_details = parsed.get("details") if isinstance(parsed, dict) else None
    if not isinstance(raw_details, list):
        return []
    return [
        TitleClassification(
            title=str(item.get("title", "")),
            aeo_optimized=bool(item.get("aeo_optimized")),
            reason=str(item.get("reason", "")),
        )
        for item in raw_details
        if isinstance(item, dict)
    ]


class ClassifierService:
    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.XAI_API_KEY
        self._api_url = api_url or settings.XAI_API_URL
        self._model = model or settings.XAI_MODEL
        self._timeout = timeout if timeout is not None else settings.CLASSIFY_TIMEOUT_SECONDS
        self._transport = transport

    async def classify(self, domain: str, titles: list[str]) -> ClassificationResult:
        """Classify blog titles as AEO-optimized. Raises ClassificationError on any failure."""
        if not self._api_key:
            raise ClassificationError("XAI_API_KEY environment variable is not set")
        if not titles:
            return ClassificationResult()

        logger.info("[classify] starting | domain=%s | titles=%d", domain, len(titles))
        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Classify these blog titles:\n\n{json.dumps(titles, indent=2)}",
                },
            ],
            "temperature": 0.3,
            "response_format": {"type": "json_object"},
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._api_url,
                    json=body,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as exc:
            raise ClassificationError(f"Failed to connect to x.ai API: {exc}") from exc

        if response.status_code == 403:
            raise ClassificationError(
                "x.ai API authentication failed (403). Please check XAI_API_KEY is set correctly."
            )
        if response.status_code >= 400:
            raise ClassificationError(
                f"x.ai API error ({response.status_code}): {response.text[:200]}"
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ClassificationError(f"Unexpected x.ai response shape: {exc}") from exc

        result = aggregate(titles, _parse_details(content))
        logger.info(
            "[classify] done | domain=%s | optimized=%d/%d",
            domain, result.aeo_optimized_count, result.total_titles,
        )
        return result
