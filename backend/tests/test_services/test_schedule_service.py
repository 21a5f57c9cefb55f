"""Tests for scheduled analysis tasks and the per-minute dispatcher."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from conftest import create_user
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.analysis.analyzer import AnalysisResult
from decyphers.analysis.charts import ChartImage
from decyphers.exceptions import BusinessRuleError
from decyphers.models.analysis_history import AnalysisHistory
from decyphers.models.schedule_task import ScheduleTask
from decyphers.models.user import User
from decyphers.services.schedule_service import (
    create_task,
    dispatch_due_tasks,
    get_due_tasks,
    next_run_after,
    update_task,
    validate_cron_expression,
)

SERVICE = "decyphers.services.schedule_service"
NOW = datetime(2026, 10, 18, 14, 30, 0)
PARAMETER = {"symbol": "FX:EURUSD", "intervals": ["1h", "4h"]}


def _images() -> list[ChartImage]:
    return [
        ChartImage(symbol="FX:EURUSD", interval="1h", content_type="image/png", data=b"png-1"),
        ChartImage(symbol="FX:EURUSD", interval="4h", content_type="image/png", data=b"png-2"),
    ]


async def _due_task(db_session: AsyncSession, user: User, offset_seconds: int = 30, **kwargs) -> ScheduleTask:
    task = ScheduleTask(
        user_id=user.id,
        cron_expression=kwargs.pop("cron_expression", "30 14 * * *"),
        parameter=kwargs.pop("parameter", dict(PARAMETER)),
        execute_at=NOW - timedelta(seconds=offset_seconds),
        **kwargs,
    )
    db_session.add(task)
    await db_session.flush()
    return task


class TestCron:
    def test_valid_expression(self):
        validate_cron_expression("*/15 * * * *")

    def test_invalid_expression(self):
        with pytest.raises(BusinessRuleError):
            validate_cron_expression("every tuesday")

    def test_next_run_is_strictly_after(self):
        assert next_run_after("30 14 * * *", NOW) == datetime(2026, 10, 19, 14, 30)
        assert next_run_after("*/5 * * * *", NOW) == datetime(2026, 10, 18, 14, 35)


class TestTaskCrud:
    @pytest.mark.asyncio
    async def test_create_sets_first_run(self, db_session: AsyncSession, test_user: User):
        task = await create_task(db_session, test_user, "0 9 * * 1", dict(PARAMETER), now=NOW)
        # 2026-10-18 is a Sunday
        assert task.execute_at == datetime(2026, 10, 19, 9, 0)
        assert task.executed is False

    @pytest.mark.asyncio
    async def test_parameter_needs_symbol(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(BusinessRuleError, match="symbol"):
            await create_task(db_session, test_user, "* * * * *", {"intervals": ["1h"]})

    @pytest.mark.asyncio
    async def test_changing_cron_rearms(self, db_session: AsyncSession, test_user: User):
        task = await create_task(db_session, test_user, "0 9 * * 1", dict(PARAMETER), now=NOW)
        await update_task(db_session, test_user, task.id, {"cron_expression": "0 * * * *"}, now=NOW)
        assert task.execute_at == datetime(2026, 10, 18, 15, 0)


class TestDueWindow:
    @pytest.mark.asyncio
    async def test_only_last_minute_and_pending(self, db_session: AsyncSession, test_user: User):
        inside = await _due_task(db_session, test_user, offset_seconds=30)
        await _due_task(db_session, test_user, offset_seconds=120)
        await _due_task(db_session, test_user, offset_seconds=-30)
        await _due_task(db_session, test_user, offset_seconds=10, executed=True)

        due = await get_due_tasks(db_session, NOW)
        assert [t.id for t in due] == [inside.id]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_successful_run_records_and_rearms(self, db_session: AsyncSession):
        user = await create_user(db_session, free_token=5000)
        task = await _due_task(db_session, user)

        with (
            patch(f"{SERVICE}.generate_charts", new_callable=AsyncMock, return_value=_images()),
            patch(
                f"{SERVICE}.analyze_charts",
                new_callable=AsyncMock,
                return_value=AnalysisResult(text="Bullish above 1.08", model="test-model", tokens_used=1200),
            ),
            patch(f"{SERVICE}.send_analysis_report", new_callable=AsyncMock, return_value=True) as mock_send,
        ):
            result = await dispatch_due_tasks(db_session, NOW)

        assert (result.completed, result.not_rearmed, result.failed) == (1, 0, 0)
        assert task.execute_at == datetime(2026, 10, 19, 14, 30)
        assert user.free_token == 3800
        mock_send.assert_awaited_once()
        assert mock_send.await_args.args[1] == user.email

        history = (await db_session.execute(select(AnalysisHistory))).scalar_one()
        assert history.schedule_task_id == task.id
        assert history.intervals == ["1h", "4h"]
        assert history.image_count == 2
        assert history.tokens_used == 1200

    @pytest.mark.asyncio
    async def test_without_smtp_task_is_not_rearmed(self, db_session: AsyncSession):
        user = await create_user(db_session, free_token=5000)
        task = await _due_task(db_session, user)
        original_execute_at = task.execute_at

        with (
            patch(f"{SERVICE}.generate_charts", new_callable=AsyncMock, return_value=_images()),
            patch(
                f"{SERVICE}.analyze_charts",
                new_callable=AsyncMock,
                return_value=AnalysisResult(text="Neutral", model="test-model", tokens_used=0),
            ),
            patch(f"{SERVICE}.send_analysis_report", new_callable=AsyncMock, return_value=False),
        ):
            result = await dispatch_due_tasks(db_session, NOW)

        assert result.not_rearmed == 1
        assert task.execute_at == original_execute_at

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, db_session: AsyncSession):
        user = await create_user(db_session, free_token=5000)
        failing = await _due_task(db_session, user, offset_seconds=50, parameter={"symbol": "FX:GBPUSD", "intervals": ["1h"]})
        working = await _due_task(db_session, user, offset_seconds=20)
        failing_id, working_id = failing.id, working.id

        async def _charts(parameter):
            if parameter["symbol"] == "FX:GBPUSD":
                raise RuntimeError("chart-img down")
            return _images()

        with (
            patch(f"{SERVICE}.generate_charts", new_callable=AsyncMock, side_effect=_charts),
            patch(
                f"{SERVICE}.analyze_charts",
                new_callable=AsyncMock,
                return_value=AnalysisResult(text="ok", model="test-model", tokens_used=100),
            ),
            patch(f"{SERVICE}.send_analysis_report", new_callable=AsyncMock, return_value=True),
        ):
            result = await dispatch_due_tasks(db_session, NOW)

        assert (result.completed, result.failed) == (1, 1)
        failing = await db_session.get(ScheduleTask, failing_id)
        working = await db_session.get(ScheduleTask, working_id)
        await db_session.refresh(failing)
        await db_session.refresh(working)
        assert failing.execute_at == NOW - timedelta(seconds=50)
        assert working.execute_at == datetime(2026, 10, 19, 14, 30)

    @pytest.mark.asyncio
    async def test_insufficient_tokens_fails_task(self, db_session: AsyncSession):
        user = await create_user(db_session, free_token=10)
        await _due_task(db_session, user)

        with (
            patch(f"{SERVICE}.generate_charts", new_callable=AsyncMock, return_value=_images()),
            patch(
                f"{SERVICE}.analyze_charts",
                new_callable=AsyncMock,
                return_value=AnalysisResult(text="ok", model="test-model", tokens_used=500),
            ),
            patch(f"{SERVICE}.send_analysis_report", new_callable=AsyncMock) as mock_send,
        ):
            result = await dispatch_due_tasks(db_session, NOW)

        assert result.failed == 1
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_due(self, db_session: AsyncSession):
        result = await dispatch_due_tasks(db_session, NOW)
        assert (result.completed, result.not_rearmed, result.failed) == (0, 0, 0)


class TestScheduleEndpoints:
    @pytest.mark.asyncio
    async def test_create_list_delete(self, client: AsyncClient, auth_headers: dict):
        created = await client.post(
            "/api/v1/schedule-tasks",
            json={"cron_expression": "0 8 * * *", "parameter": PARAMETER},
            headers=auth_headers,
        )
        assert created.status_code == 201
        task = created.json()["data"]
        assert task["command"] == "schedule-analysis"
        assert task["execute_at"] is not None

        listed = await client.get("/api/v1/schedule-tasks", headers=auth_headers)
        assert [t["id"] for t in listed.json()["data"]] == [task["id"]]

        deleted = await client.delete(f"/api/v1/schedule-tasks/{task['id']}", headers=auth_headers)
        assert deleted.status_code == 200

    @pytest.mark.asyncio
    async def test_invalid_cron_rejected(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/schedule-tasks",
            json={"cron_expression": "not a cron", "parameter": PARAMETER},
            headers=auth_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_other_users_task_hidden(
        self, client: AsyncClient, db_session: AsyncSession, admin_user: User, auth_headers: dict
    ):
        task = await _due_task(db_session, admin_user)
        response = await client.get(f"/api/v1/schedule-tasks/{task.id}", headers=auth_headers)
        assert response.status_code == 404


async def _history(db_session: AsyncSession, user: User, symbol: str = "FX:EURUSD") -> AnalysisHistory:
    entry = AnalysisHistory(
        user_id=user.id,
        symbol=symbol,
        intervals=["1h"],
        image_count=1,
        analysis=f"{symbol} is ranging",
        model="gpt-4o",
        tokens_used=900,
    )
    db_session.add(entry)
    await db_session.flush()
    return entry


class TestHistoryEndpoints:
    @pytest.mark.asyncio
    async def test_list_is_owner_scoped(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_user: User, auth_headers: dict
    ):
        mine = await _history(db_session, test_user)
        await _history(db_session, admin_user)

        response = await client.get("/api/v1/history", headers=auth_headers)
        assert response.status_code == 200
        entries = response.json()["data"]
        assert [e["id"] for e in entries] == [str(mine.id)]
        assert entries[0]["analysis"] == "FX:EURUSD is ranging"

    @pytest.mark.asyncio
    async def test_filter_by_symbol(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        await _history(db_session, test_user)
        gold = await _history(db_session, test_user, symbol="OANDA:XAUUSD")

        response = await client.get("/api/v1/history", params={"symbol": "OANDA:XAUUSD"}, headers=auth_headers)
        assert [e["id"] for e in response.json()["data"]] == [str(gold.id)]

    @pytest.mark.asyncio
    async def test_get_and_delete(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        entry = await _history(db_session, test_user)
        entry_id = entry.id

        fetched = await client.get(f"/api/v1/history/{entry_id}", headers=auth_headers)
        assert fetched.json()["data"]["tokens_used"] == 900

        deleted = await client.delete(f"/api/v1/history/{entry_id}", headers=auth_headers)
        assert deleted.status_code == 200
        remaining = (await db_session.execute(select(AnalysisHistory))).scalars().all()
        assert remaining == []

    @pytest.mark.asyncio
    async def test_other_users_entry_hidden(
        self, client: AsyncClient, db_session: AsyncSession, admin_user: User, auth_headers: dict
    ):
        entry = await _history(db_session, admin_user)
        assert (await client.get(f"/api/v1/history/{entry.id}", headers=auth_headers)).status_code == 404
        assert (await client.delete(f"/api/v1/history/{entry.id}", headers=auth_headers)).status_code == 404
