from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JobAccepted(_CamelModel):
    job_id: str = Field(alias="jobId")
    domain: str
    status: str = "pending"
    message: str = "Job created. Use GET /analyze-velocity/{jobId} to check status."
    status_url: str = Field(alias="statusUrl")


class JobStatusResponse(_CamelModel):
    status: str
    message: str | None = None
    job_id: str | None = Field(default=None, alias="jobId")
    domain: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    result: dict[str, Any] | None = None
    error: str | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str | None = None
