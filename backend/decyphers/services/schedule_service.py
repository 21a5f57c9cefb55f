"""Scheduled analysis tasks: CRUD helpers and the per-minute dispatch loop."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from croniter import croniter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.analysis.analyzer import analyze_charts
from decyphers.analysis.charts import ChartGenerationError, build_chart_payloads, generate_charts
from decyphers.database import utcnow
from decyphers.exceptions import BusinessRuleError, NotFoundError
from decyphers.models.analysis_history import AnalysisHistory
from decyphers.models.schedule_task import SCHEDULE_ANALYSIS, ScheduleTask
from decyphers.models.user import User
from decyphers.services.mail_service import send_analysis_report
from decyphers.services.token_service import deduct_tokens

logger = logging.getLogger(__name__)

DISPATCH_WINDOW = timedelta(minutes=1)


def validate_cron_expression(expression: str) -> None:
    if not expression or not croniter.is_valid(expression):
        raise BusinessRuleError(f"Invalid cron expression: {expression!r}")


def next_run_after(expression: str, after: datetime) -> datetime:
    """First occurrence of ``expression`` strictly after ``after``."""
    return croniter(expression, after).get_next(datetime)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def list_tasks(db: AsyncSession, user: User) -> list[ScheduleTask]:
    result = await db.execute(
        select(ScheduleTask)
        .where(ScheduleTask.user_id == user.id)
        .order_by(ScheduleTask.created_at.desc())
    )
    return list(result.scalars().all())


async def get_task(db: AsyncSession, user: User, task_id: uuid.UUID) -> ScheduleTask:
    task = await db.get(ScheduleTask, task_id)
    if task is None or task.user_id != user.id:
        raise NotFoundError("Schedule task not found")
    return task


def _validate_parameter(parameter: dict[str, Any]) -> None:
    try:
        build_chart_payloads(parameter)
    except ChartGenerationError as e:
        raise BusinessRuleError(str(e)) from e


async def create_task(
    db: AsyncSession,
    user: User,
    cron_expression: str,
    parameter: dict[str, Any],
    command: str = SCHEDULE_ANALYSIS,
    now: datetime | None = None,
) -> ScheduleTask:
    validate_cron_expression(cron_expression)
    _validate_parameter(parameter)
    now = now or utcnow()

    task = ScheduleTask(
        user_id=user.id,
        command=command,
        cron_expression=cron_expression,
        parameter=parameter,
        execute_at=next_run_after(cron_expression, now),
        executed=False,
    )
    db.add(task)
    await db.flush()
    logger.info("Created schedule task %s for user %s (%s)", task.id, user.id, cron_expression)
    return task


async def update_task(
    db: AsyncSession,
    user: User,
    task_id: uuid.UUID,
    changes: dict[str, Any],
    now: datetime | None = None,
) -> ScheduleTask:
    task = await get_task(db, user, task_id)
    now = now or utcnow()

    if "parameter" in changes and changes["parameter"] is not None:
        _validate_parameter(changes["parameter"])
        task.parameter = dict(changes["parameter"])
    if changes.get("cron_expression"):
        validate_cron_expression(changes["cron_expression"])
        task.cron_expression = changes["cron_expression"]
        task.execute_at = next_run_after(task.cron_expression, now)
    if "executed" in changes and changes["executed"] is not None:
        task.executed = changes["executed"]
    await db.flush()
    return task


async def delete_task(db: AsyncSession, user: User, task_id: uuid.UUID) -> None:
    task = await get_task(db, user, task_id)
    await db.delete(task)
    await db.flush()


# ---------------------------------------------------------------------------
# Analysis history
# ---------------------------------------------------------------------------


async def list_history(
    db: AsyncSession, user: User, symbol: str | None = None
) -> list[AnalysisHistory]:
    """The user's reports, newest first, optionally for one symbol."""
    query = (
        select(AnalysisHistory)
        .where(AnalysisHistory.user_id == user.id)
        .order_by(AnalysisHistory.created_at.desc())
    )
    if symbol:
        query = query.where(AnalysisHistory.symbol == symbol)
    return list((await db.execute(query)).scalars().all())


async def get_history(db: AsyncSession, user: User, history_id: uuid.UUID) -> AnalysisHistory:
    entry = await db.get(AnalysisHistory, history_id)
    if entry is None or entry.user_id != user.id:
        raise NotFoundError("Analysis not found")
    return entry


async def delete_history(db: AsyncSession, user: User, history_id: uuid.UUID) -> None:
    entry = await get_history(db, user, history_id)
    await db.delete(entry)
    await db.flush()
    logger.info("Deleted analysis %s for user %s", history_id, user.id)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def get_due_tasks(db: AsyncSession, now: datetime | None = None) -> list[ScheduleTask]:
    """Pending tasks whose ``execute_at`` falls within the last minute."""
    now = now or utcnow()
    result = await db.execute(
        select(ScheduleTask)
        .where(
            ScheduleTask.execute_at >= now - DISPATCH_WINDOW,
            ScheduleTask.execute_at <= now,
            ScheduleTask.executed.is_(False),
        )
        .order_by(ScheduleTask.execute_at)
    )
    return list(result.scalars().all())


async def run_analysis_task(db: AsyncSession, task: ScheduleTask, now: datetime) -> bool:
    """Render, analyse, record, and mail one task on behalf of its owner.

    Returns True when the report was mailed and the task rearmed, False when
    no default SMTP configuration exists (task left as is).
    """
    user = await db.get(User, task.user_id)
    if user is None or not user.is_active:
        raise NotFoundError(f"Owner of schedule task {task.id} is missing or inactive")

    parameter = dict(task.parameter or {})
    symbol = parameter.get("symbol", "")

    images = await generate_charts(parameter)
    if not images:
        raise BusinessRuleError(f"No chart images generated for task {task.id}")

    result = await analyze_charts(symbol, images)
    await deduct_tokens(db, user, result.tokens_used, "scheduled_analysis", reference=str(task.id))

    db.add(
        AnalysisHistory(
            user_id=user.id,
            schedule_task_id=task.id,
            symbol=symbol,
            intervals=[image.interval for image in images],
            image_count=len(images),
            analysis=result.text,
            model=result.model,
            tokens_used=result.tokens_used,
        )
    )
    await db.flush()

    sent = await send_analysis_report(db, user.email, symbol, result.text, images)
    if not sent:
        return False

    task.execute_at = next_run_after(task.cron_expression, now)
    await db.flush()
    logger.info("Schedule task %s done, next run at %s", task.id, task.execute_at)
    return True


@dataclass
class DispatchResult:
    completed: int = 0
    not_rearmed: int = 0
    failed: int = 0


async def dispatch_due_tasks(db: AsyncSession, now: datetime | None = None) -> DispatchResult:
    """One scheduler tick. Each task runs in its own savepoint; failures are logged and skipped.

    There is no lock: two overlapping ticks can both pick up the same task.
    """
    now = now or utcnow()
    outcome = DispatchResult()
    tasks = await get_due_tasks(db, now)
    if not tasks:
        logger.info("No schedule task found")
        return outcome

    for task in tasks:
        task_id = task.id
        logger.info("Running schedule task %s", task_id)
        try:
            async with db.begin_nested():
                if task.command != SCHEDULE_ANALYSIS:
                    raise BusinessRuleError(f"Unknown schedule command: {task.command}")
                rearmed = await run_analysis_task(db, task, now)
        except Exception:
            logger.exception("Schedule task %s failed", task_id)
            outcome.failed += 1
            continue

        if rearmed:
            outcome.completed += 1
        else:
            outcome.not_rearmed += 1

    logger.info(
        "Scheduler tick: %d completed, %d not rearmed, %d failed",
        outcome.completed,
        outcome.not_rearmed,
        outcome.failed,
    )
    return outcome
