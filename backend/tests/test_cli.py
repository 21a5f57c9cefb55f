"""Tests for the scheduled-job command line."""

import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from decyphers.cli import cli
from decyphers.services.schedule_service import DispatchResult
from decyphers.services.subscription_service import RenewalResult
from decyphers.services.token_service import MonthlyGrantResult

CLI = "decyphers.cli"


@pytest.fixture
def fake_session():
    session = MagicMock(name="session")

    @asynccontextmanager
    async def _scope():
        yield session

    with patch(f"{CLI}.session_scope", _scope):
        yield session


@pytest.fixture
def runner():
    return CliRunner()


class TestProcessRenewals:
    def test_reports_counts(self, runner, fake_session):
        result_obj = RenewalResult(renewed=[uuid.uuid4(), uuid.uuid4()])
        with patch(f"{CLI}.process_due_renewals", new_callable=AsyncMock, return_value=result_obj) as mock_job:
            result = runner.invoke(cli, ["process-renewals"])

        assert result.exit_code == 0
        assert "Renewed 2 subscriptions, 0 failed" in result.output
        mock_job.assert_awaited_once_with(fake_session)

    def test_failures_exit_non_zero(self, runner, fake_session):
        result_obj = RenewalResult(renewed=[], failed=[uuid.uuid4()])
        with patch(f"{CLI}.process_due_renewals", new_callable=AsyncMock, return_value=result_obj):
            result = runner.invoke(cli, ["process-renewals"])
        assert result.exit_code == 1


class TestAddMonthlyTokens:
    def test_default_amount(self, runner, fake_session):
        grant = MonthlyGrantResult(subscribed_users=2, free_users=3)
        with patch(f"{CLI}.grant_monthly_tokens", new_callable=AsyncMock, return_value=grant) as mock_grant:
            result = runner.invoke(cli, ["add-monthly-tokens"])

        assert result.exit_code == 0
        mock_grant.assert_awaited_once_with(fake_session, 15000)
        assert "Granted 15000 tokens to 5 users (2 subscribed, 3 free)" in result.output

    def test_explicit_amount(self, runner, fake_session):
        with patch(
            f"{CLI}.grant_monthly_tokens", new_callable=AsyncMock, return_value=MonthlyGrantResult()
        ) as mock_grant:
            runner.invoke(cli, ["add-monthly-tokens", "20000"])
        mock_grant.assert_awaited_once_with(fake_session, 20000)

    def test_job_error_exits_with_message(self, runner, fake_session):
        with patch(f"{CLI}.grant_monthly_tokens", new_callable=AsyncMock, side_effect=RuntimeError("db down")):
            result = runner.invoke(cli, ["add-monthly-tokens"])
        assert result.exit_code == 1
        assert "add-monthly-tokens failed: db down" in result.output


class TestScheduleAnalysis:
    def test_reports_dispatch(self, runner, fake_session):
        outcome = DispatchResult(completed=3, not_rearmed=1, failed=0)
        with patch(f"{CLI}.dispatch_due_tasks", new_callable=AsyncMock, return_value=outcome):
            result = runner.invoke(cli, ["schedule-analysis"])
        assert result.exit_code == 0
        assert "3 completed, 1 not rearmed, 0 failed" in result.output


class TestAddForexNews:
    def test_imports_feed(self, runner, fake_session):
        items = [{"title": "CPI m/m"}]
        with (
            patch(f"{CLI}.fetch_calendar", new_callable=AsyncMock, return_value=items),
            patch(f"{CLI}.import_forex_news", new_callable=AsyncMock, return_value=1) as mock_import,
        ):
            result = runner.invoke(cli, ["add-forex-news"])

        assert result.exit_code == 0
        mock_import.assert_awaited_once_with(fake_session, items)
        assert "Imported 1 forex news items" in result.output


class TestTelegramWebhook:
    def test_set(self, runner):
        info = {"url": "https://api.test.com/api/v1/telegram/webhook", "pending_update_count": 0}
        with patch(f"{CLI}.set_webhook", new_callable=AsyncMock, return_value=info) as mock_set:
            result = runner.invoke(cli, ["telegram-webhook", "--url", info["url"]])

        assert result.exit_code == 0
        mock_set.assert_awaited_once_with(info["url"])
        assert "Webhook set" in result.output

    def test_remove(self, runner):
        with patch(f"{CLI}.remove_webhook", new_callable=AsyncMock, return_value=True) as mock_remove:
            result = runner.invoke(cli, ["telegram-webhook", "--remove"])
        assert result.exit_code == 0
        mock_remove.assert_awaited_once()
