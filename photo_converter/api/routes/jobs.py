"""Read-only routes over persisted conversion jobs."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from photo_converter.api.dependencies import get_auth_dependency, get_context
from photo_converter.core.container import AppContext
from photo_converter.models.job import JobSummary

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(get_auth_dependency)])


@router.get("", response_model=List[JobSummary], summary="List stored jobs, oldest first")
def list_jobs(context: AppContext = Depends(get_context)) -> List[JobSummary]:
    return [JobSummary.from_job(job) for job in context.job_store.list_jobs()]


@router.get("/{job_id}", response_model=JobSummary, summary="Retrieve a stored job")
def get_job(job_id: str, context: AppContext = Depends(get_context)) -> JobSummary:
    job = context.job_store.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobSummary.from_job(job)


@router.get("/{job_id}/converted", summary="Download the converted image of a stored job")
def get_job_output(job_id: str, context: AppContext = Depends(get_context)) -> Response:
    job = context.job_store.get(job_id)
    if job is None or job.converted_image_bytes is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return Response(content=job.converted_image_bytes, media_type=job.output_format.mime_type)
