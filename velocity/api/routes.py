import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from velocity.models.job import JobStatus
from velocity.schemas.analyze import ErrorResponse, JobAccepted, JobStatusResponse
from velocity.services.domain_service import extract_website_url, normalize_domain

logger = logging.getLogger(__name__)

router = APIRouter()

USAGE = {
    "method": "POST",
    "url": "/analyze-velocity",
    "body": {"website_url": "example.com"},
}


def _json(model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get("/")
async def index() -> dict:
    return {
        "name": "Content Velocity API",
        "version": "1.0.0",
        "endpoints": {"health": "GET /health", "analyze": "POST /analyze-velocity"},
        "usage": USAGE,
    }


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/analyze-velocity")
async def analyze_usage() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={
            "error": "Method Not Allowed",
            "message": "This endpoint requires POST method",
            "usage": USAGE,
        },
    )


@router.post("/analyze-velocity", status_code=202)
async def analyze(request: Request) -> JSONResponse:
    body = await request.body()
    website_url = extract_website_url(
        body, request.headers.get("content-type", ""), dict(request.query_params)
    )
    if not website_url:
        logger.info("[analyze] rejected, no website_url | content_type=%s", request.headers.get("content-type"))
        return _json(
            ErrorResponse(error="website_url is required (in body, query parameter, or as raw body)"),
            status_code=400,
        )

    domain = normalize_domain(website_url)
    job_id = request.app.state.job_service.submit(domain)
    logger.info("[analyze] queued | job_id=%s | domain=%s | input=%s", job_id, domain, website_url)
    return _json(
        JobAccepted(job_id=job_id, domain=domain, status_url=f"/analyze-velocity/{job_id}"),
        status_code=202,
    )


@router.get("/analyze-velocity/{job_id}")
async def job_status(job_id: str, request: Request) -> JSONResponse:
    job = request.app.state.job_store.get(job_id)
    if job is None:
        return _json(
            ErrorResponse(error="Job not found", message=f"No job found with ID: {job_id}"),
            status_code=404,
        )

    if job.status == JobStatus.COMPLETED:
        return _json(JobStatusResponse(status=job.status.value, result=job.result))
    if job.status == JobStatus.FAILED:
        return _json(JobStatusResponse(status=job.status.value, error=job.error), status_code=500)

    message = (
        "Job is currently processing. Check back in 30-60 seconds."
        if job.status == JobStatus.PROCESSING
        else "Job is queued and will start soon."
    )
    return _json(
        JobStatusResponse(
            status=job.status.value,
            message=message,
            job_id=job.id,
            domain=job.domain,
            created_at=job.created_at,
        )
    )
