import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from velocity.models.job import JobStatus
from velocity.models.post import BlogPost, ClassificationResult, ScrapeResult, TitleClassification
from velocity.repositories.job_store import InMemoryJobStore
from velocity.services.classifier_service import ClassificationError
from velocity.services.job_service import JobService
from velocity.services.scraper_service import ScrapeClientError, ScrapeServerError

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def _days_ago(n: int) -> str:
    return (NOW - timedelta(days=n)).date().isoformat()


SCRAPE = ScrapeResult(
    title="Example Blog",
    posts=[
        BlogPost("How to ship faster", _days_ago(2)),
        BlogPost("Announcing v2", _days_ago(10)),
        BlogPost("What is AEO?", _days_ago(40)),
    ],
)

CLASSIFICATION = ClassificationResult(
    total_titles=3,
    aeo_optimized_count=2,
    non_aeo_count=1,
    aeo_percentage=66.7,
    non_aeo_percentage=33.3,
    details=[
        TitleClassification("How to ship faster", True, "how-to"),
        TitleClassification("Announcing v2", False, "announcement"),
        TitleClassification("What is AEO?", True, "question"),
    ],
)


def _service(scrape=None, classification=None, scrape_error=None, classify_error=None):
    store = InMemoryJobStore()
    scraper = AsyncMock()
    scraper.fetch_posts = AsyncMock(return_value=scrape, side_effect=scrape_error)
    classifier = AsyncMock()
    classifier.classify = AsyncMock(return_value=classification, side_effect=classify_error)
    service = JobService(store, scraper=scraper, classifier=classifier, clock=lambda: NOW)
    return service, store, scraper, classifier


@pytest.mark.asyncio
async def test_run_job_completes_with_merged_result():
    service, store, scraper, classifier = _service(SCRAPE, CLASSIFICATION)
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.error is None
    result = job.result
    assert result["domain"] == "example.com"
    assert result["blog_found"] is True
    assert result["blog_title"] == "Example Blog"
    assert result["total_posts_analyzed"] == 3
    assert result["posts_last_30_days"] == 2
    assert result["posts_previous_30_days"] == 1
    assert result["velocity_trend_30_days"] == "up"
    assert result["percentage_change_30_days"] == 100.0
    assert result["posts_last_14_days"] == 2
    assert result["posts_previous_14_days"] == 0
    assert result["aeo_optimized_count"] == 2
    assert result["aeo_optimized_titles"] == ["How to ship faster", "What is AEO?"]
    assert result["non_aeo_titles"] == ["Announcing v2"]
    classifier.classify.assert_awaited_once_with(
        "example.com", ["How to ship faster", "Announcing v2", "What is AEO?"]
    )


@pytest.mark.asyncio
async def test_run_job_scrape_client_error_fails_job():
    error = ScrapeClientError("Anchor Browser API client error: 401.", status_code=401)
    service, store, _, classifier = _service(scrape_error=error)
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    job = store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert "401" in job.error
    assert job.result is None
    assert job.completed_at is not None
    classifier.classify.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_job_exhausted_retries_fails_job():
    service, store, _, _ = _service(scrape_error=ScrapeServerError("Anchor Browser server error (503)", 503))
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    assert store.get(job_id).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_run_job_no_posts_with_title_completes():
    service, store, _, classifier = _service(ScrapeResult(title="Quiet Blog", posts=[]))
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["blog_found"] is True
    assert job.result["posts_last_30_days"] == 0
    assert job.result["velocity_trend_30_days"] == "no-change"
    assert job.result["percentage_change_14_days"] == 0
    classifier.classify.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_job_no_blog_found():
    service, store, _, _ = _service(ScrapeResult())
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["blog_found"] is False
    assert job.result["blog_title"] is None


@pytest.mark.asyncio
async def test_run_job_classification_failure_degrades():
    service, store, _, _ = _service(SCRAPE, classify_error=ClassificationError("x.ai API error (500)"))
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["posts_last_30_days"] == 2
    assert job.result["aeo_optimized_count"] == 0
    assert job.result["non_aeo_count"] == 0
    assert job.result["aeo_optimized_percentage"] == 0
    assert job.result["aeo_optimized_titles"] == []


@pytest.mark.asyncio
async def test_run_job_unexpected_error_still_terminates():
    service, store, _, _ = _service(scrape_error=RuntimeError("something odd"))
    job_id = store.create("example.com")

    await service.run_job(job_id, "example.com")

    job = store.get(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "something odd"


@pytest.mark.asyncio
async def test_submit_returns_before_scrape_finishes():
    release = asyncio.Event()
    service, store, scraper, _ = _service(classification=CLASSIFICATION)

    async def slow_scrape(domain):
        await release.wait()
        return SCRAPE

    scraper.fetch_posts = AsyncMock(side_effect=slow_scrape)

    job_id = service.submit("example.com")
    assert store.get(job_id).status == JobStatus.PENDING
    assert service.in_flight == 1

    await asyncio.sleep(0)
    assert store.get(job_id).status == JobStatus.PROCESSING

    release.set()
    await service.wait_for_all()

    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["posts_last_30_days"] >= 0
    assert job.result["posts_last_14_days"] >= 0
    assert service.in_flight == 0


@pytest.mark.asyncio
async def test_concurrent_jobs_are_independent():
    service, store, scraper, _ = _service(classification=CLASSIFICATION)

    async def scrape(domain):
        if domain == "broken.com":
            raise ScrapeClientError("Anchor Browser API client error: 400.", status_code=400)
        return SCRAPE

    scraper.fetch_posts = AsyncMock(side_effect=scrape)

    ok_id = service.submit("example.com")
    bad_id = service.submit("broken.com")
    await service.wait_for_all()

    assert store.get(ok_id).status == JobStatus.COMPLETED
    assert store.get(bad_id).status == JobStatus.FAILED
