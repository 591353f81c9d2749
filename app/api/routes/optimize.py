from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.exceptions import (
    AccountNotFound,
    ConcurrencyConflict,
    RateLimitExceeded,
    RecordAccessDenied,
    RecordNotFound,
    RewriteUpstreamFailure,
)
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.models.optimization_record import OptimizationRecord
from app.schemas.optimization import OptimizeRequest, OptimizeResponse, PromptResponse
from app.services.optimization_service import delete_record, get_owned_record, list_records, optimize_for_account
from app.services.prompt_rewriter import PromptRewriter, get_prompt_rewriter

router = APIRouter()


def _prompt_payload(record: OptimizationRecord) -> dict:
    return {
        "id": record.id,
        "original_prompt": record.input_text,
        "optimized_prompt": record.output_text,
        "audience": record.audience,
        "focus_areas": record.focus_area_list,
        "created_at": record.created_at,
    }


@router.post("/optimize", response_model=OptimizeResponse)
async def optimize_prompt(
    request: OptimizeRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    rewriter: PromptRewriter = Depends(get_prompt_rewriter),
):
    """
    Rewrite a prompt for the current account.
    One optimization is charged on admission, even if the rewrite then fails.
    """
    try:
        record, result, decision = await optimize_for_account(
            db,
            user_id,
            request.original_prompt,
            rewriter,
            audience=request.audience,
            focus_areas=request.focus_areas,
        )
    except AccountNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except RateLimitExceeded as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e))
    except ConcurrencyConflict:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many simultaneous requests. Please try again in a moment."
        )
    except RewriteUpstreamFailure as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to optimize prompt. Please try again later.", "reason": str(e), "charged": e.charged},
        )

    return {
        **_prompt_payload(record),
        "reasoning": result.rationale,
        "improvements": result.improvements,
        "prompts_used": decision.prompts_used,
    }


@router.get("/prompts", response_model=list[PromptResponse])
def get_prompts(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Optimization history of the current account, newest first."""
    return [_prompt_payload(record) for record in list_records(db, user_id)]


@router.get("/prompts/{prompt_id}", response_model=PromptResponse)
def get_prompt(
    prompt_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return _prompt_payload(get_owned_record(db, user_id, prompt_id))
    except RecordNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prompt not found")
    except RecordAccessDenied:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")


@router.delete("/prompts/{prompt_id}")
def remove_prompt(
    prompt_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        delete_record(db, user_id, prompt_id)
    except RecordNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prompt not found")
    except RecordAccessDenied:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return {"message": "Prompt deleted successfully"}
