"""
Optimization flow: admission, the rewrite call, and the history of an
account's optimizations.
"""
import logging

from sqlalchemy.orm import Session

from app.core.config import REWRITE_TIMEOUT_SECONDS
from app.core.exceptions import RateLimitExceeded, RecordAccessDenied, RecordNotFound, RewriteUpstreamFailure
from app.core.plan_limits import DEFAULT_AUDIENCE, DEFAULT_FOCUS_AREAS
from app.models.optimization_record import OptimizationRecord
from app.services.admission import AdmissionDecision, try_consume
from app.services.prompt_rewriter import PromptRewriter, RewriteResult
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def optimize_for_account(
    db: Session,
    account_id: int,
    text: str,
    rewriter: PromptRewriter,
    audience: str | None = None,
    focus_areas: list[str] | None = None,
    timeout: float = REWRITE_TIMEOUT_SECONDS,
) -> tuple[OptimizationRecord, RewriteResult, AdmissionDecision]:
    """
    Charge one optimization, rewrite text and store the result.

    The slot is committed before the rewrite call and stays consumed when the
    call fails (RewriteUpstreamFailure is raised with charged=True).
    """
    audience = audience or DEFAULT_AUDIENCE
    focus_areas = list(focus_areas) if focus_areas else list(DEFAULT_FOCUS_AREAS)

    decision = try_consume(db, account_id)
    if not decision.allowed:
        raise RateLimitExceeded(decision.prompts_used, decision.limit)

    try:
        result = await rewriter.rewrite(text, audience, focus_areas, timeout=timeout)
    except RewriteUpstreamFailure as e:
        logger.warning("Rewrite failed for account %s after charging slot %s: %s", account_id, decision.prompts_used, e)
        raise

    record = OptimizationRecord(
        account_id=account_id,
        input_text=text,
        output_text=result.rewritten_text,
        audience=audience,
        focus_areas=",".join(focus_areas),
        created_at=utcnow(),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record, result, decision


def list_records(db: Session, account_id: int) -> list[OptimizationRecord]:
    """Newest first."""
    return (
        db.query(OptimizationRecord)
        .filter(OptimizationRecord.account_id == account_id)
        .order_by(OptimizationRecord.created_at.desc(), OptimizationRecord.id.desc())
        .all()
    )


def get_owned_record(db: Session, account_id: int, record_id: int) -> OptimizationRecord:
    record = db.query(OptimizationRecord).filter(OptimizationRecord.id == record_id).first()
    if not record:
        raise RecordNotFound(f"Prompt {record_id} not found")
    if record.account_id != account_id:
        raise RecordAccessDenied(f"Prompt {record_id} belongs to another account")
    return record


def delete_record(db: Session, account_id: int, record_id: int) -> None:
    record = get_owned_record(db, account_id, record_id)
    db.delete(record)
    db.commit()
    logger.info("Account %s deleted prompt %s", account_id, record_id)
