import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from velocity.models.job import JobStatus
from velocity.models.post import ClassificationResult, ScrapeResult, VelocityMetrics
from velocity.repositories.base import AbstractJobStore
from velocity.services.classifier_service import ClassifierService
from velocity.services.scraper_service import ScraperService
from velocity.services.velocity_service import DEFAULT_WINDOWS, analyze_velocity

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_result(
    domain: str,
    scrape: ScrapeResult,
    velocity: VelocityMetrics,
    classification: ClassificationResult,
) -> dict[str, Any]:
    result: dict[str, Any] = {
        "domain": domain,
        "blog_found": bool(scrape.posts) or scrape.title is not None,
        "blog_title": scrape.title,
        "total_posts_analyzed": len(scrape.posts),
    }
    for days, window in velocity.windows.items():
        result[f"posts_last_{days}_days"] = window.current_count
        result[f"posts_previous_{days}_days"] = window.previous_count
        result[f"velocity_trend_{days}_days"] = window.trend.value
        result[f"percentage_change_{days}_days"] = window.percentage_change
    result.update(
        {
            "aeo_optimized_count": classification.aeo_optimized_count,
            "aeo_optimized_percentage": classification.aeo_percentage,
            "non_aeo_count": classification.non_aeo_count,
            "non_aeo_percentage": classification.non_aeo_percentage,
            "aeo_optimized_titles": classification.aeo_optimized_titles,
            "non_aeo_titles": classification.non_aeo_titles,
        }
    )
    return result


class JobService:
    """Accepts analysis requests and runs each one as a detached background task."""

    def __init__(
        self,
        store: AbstractJobStore,
        scraper: ScraperService | None = None,
        classifier: ClassifierService | None = None,
        windows: Sequence[int] = DEFAULT_WINDOWS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._scraper = scraper or ScraperService()
        self._classifier = classifier or ClassifierService()
        self._windows = tuple(windows)
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, domain: str) -> str:
        """Create a job and start processing it without waiting. Must run inside an event loop."""
        job_id = self._store.create(domain)
        task = asyncio.create_task(self.run_job(job_id, domain), name=f"velocity-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job_id

    async def wait_for_all(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _classify(self, job_id: str, domain: str, scrape: ScrapeResult) -> ClassificationResult:
        titles = [post.title for post in scrape.posts]
        try:
            return await self._classifier.classify(domain, titles)
        except Exception as exc:
            logger.warning(
                "[job] classification failed, continuing without it | job_id=%s | error=%s",
                job_id, exc,
            )
            return ClassificationResult()

    async def _process(self, job_id: str, domain: str) -> None:
        self._store.update(job_id, status=JobStatus.PROCESSING)
        logger.info("[job] processing | job_id=%s | domain=%s", job_id, domain)

        scrape = await self._scraper.fetch_posts(domain)
        velocity = analyze_velocity(scrape.posts, self._clock(), self._windows)

        if not scrape.posts:
            logger.info("[job] no posts found | job_id=%s | blog_found=%s", job_id, scrape.title is not None)
            self._store.complete(job_id, build_result(domain, scrape, velocity, ClassificationResult()))
            return

        classification = await self._classify(job_id, domain, scrape)
        self._store.complete(job_id, build_result(domain, scrape, velocity, classification))
        logger.info("[job] completed | job_id=%s | posts=%d", job_id, len(scrape.posts))

    async def run_job(self, job_id: str, domain: str) -> None:
        """Drive one job to a terminal state. Never raises."""
        try:
            await self._process(job_id, domain)
        except Exception as exc:
            logger.exception("[job] failed | job_id=%s | domain=%s", job_id, domain)
            self._fail(job_id, str(exc) or type(exc).__name__)

    def _fail(self, job_id: str, message: str) -> None:
        try:
            job = self._store.get(job_id)
            if job is None or job.status.is_terminal:
                return
            if job.status == JobStatus.PENDING:
                self._store.update(job_id, status=JobStatus.PROCESSING)
            self._store.fail(job_id, message)
        except Exception:
            logger.exception("[job] could not record failure | job_id=%s", job_id)
