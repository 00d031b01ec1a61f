"""Submission intake and review endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from terra_verify.api.error_utils import create_error_response
from terra_verify.data_management.schemas.submission_schema import (
    Submission,
    SubmissionCreate,
    SubmissionStatus,
)
from terra_verify.intake.submission_service import SubmissionService

router = APIRouter(tags=["submissions"])


class ReviewRequest(BaseModel):
    approved: bool
    review_notes: Optional[str] = None
    reviewer_id: Optional[str] = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


def get_service(request: Request) -> SubmissionService:
    return request.app.state.submission_service


def _dump(submission: Submission) -> dict:
    return submission.model_dump(mode="json", by_alias=True)


@router.post("/submissions")
async def create_submission(
    payload: SubmissionCreate,
    wait: bool = Query(False, description="Wait for verification before responding"),
    service: SubmissionService = Depends(get_service),
):
    submission, handle = await service.create_submission(payload)
    if wait:
        submission = await handle.wait()
    return {
        "success": True,
        "submission": _dump(submission),
        "pipelineId": handle.pipeline_id,
        "message": "Submission created successfully",
    }


@router.get("/submissions")
async def list_submissions(
    user_id: Optional[str] = Query(None, alias="userId"),
    status: Optional[SubmissionStatus] = Query(None),
    service: SubmissionService = Depends(get_service),
):
    submissions = await service.list_submissions(user_id=user_id, status=status)
    return {
        "success": True,
        "submissions": [_dump(s) for s in submissions],
        "total": len(submissions),
    }


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    service: SubmissionService = Depends(get_service),
):
    submission = await service.get_submission(submission_id)
    return {"success": True, "submission": _dump(submission)}


@router.post("/submissions/{submission_id}")
async def review_submission(
    submission_id: str,
    review: ReviewRequest,
    service: SubmissionService = Depends(get_service),
):
    submission = await service.review_submission(
        submission_id,
        approved=review.approved,
        review_notes=review.review_notes,
        reviewer_id=review.reviewer_id,
    )
    outcome = "approved" if review.approved else "rejected"
    return {
        "success": True,
        "submission": _dump(submission),
        "message": f"Submission {outcome} successfully",
    }


@router.get("/pipelines/{pipeline_id}")
async def get_pipeline(
    pipeline_id: str,
    service: SubmissionService = Depends(get_service),
):
    pipeline = await service.orchestrator.get_pipeline_status(pipeline_id)
    if pipeline is None:
        return create_error_response(
            "PIPELINE_NOT_FOUND", f"Pipeline not found: {pipeline_id}", status_code=404
        )
    return {"success": True, "pipeline": pipeline.model_dump(mode="json", by_alias=True)}
