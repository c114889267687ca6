"""Tests for usage billing: cost math, ledger insert and monthly rollup."""

from __future__ import annotations

import uuid

from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.services.billing_service import BillingService, billing_month, compute_cost


class TestComputeCost:
    def test_basic(self) -> None:
        assert compute_cost(1000, Decimal("0.00015")) == Decimal("0.000150")

    def test_quantized_half_up(self) -> None:
        # 7 tokens at 0.0006/1k = 0.0000042 -> 0.000004
        assert compute_cost(7, Decimal("0.0006")) == Decimal("0.000004")
        # 25 tokens at 0.0006/1k = 0.000015 exactly
        assert compute_cost(25, Decimal("0.0006")) == Decimal("0.000015")
        # 5 tokens at 0.0001/1k = 0.0000005 -> rounds up
        assert compute_cost(5, Decimal("0.0001")) == Decimal("0.000001")

    def test_zero_tokens(self) -> None:
        assert compute_cost(0, Decimal("0.0006")) == Decimal("0.000000")


class TestBillingMonth:
    def test_first_of_month(self) -> None:
        assert billing_month(datetime(2025, 3, 17, 9, 30, tzinfo=UTC)) == date(2025, 3, 1)

    def test_converted_to_utc(self) -> None:
        kst = timezone(timedelta(hours=9))
        # 2025-04-01 03:00 KST is still March in UTC
        assert billing_month(datetime(2025, 4, 1, 3, 0, tzinfo=kst)) == date(2025, 3, 1)


class TestRecordUsage:
    @pytest.mark.asyncio
    async def test_ledger_and_rollup_in_one_transaction(
        self, mock_db_pool: MagicMock, user_id: uuid.UUID, chatroom_id: uuid.UUID
    ) -> None:
        conn: AsyncMock = mock_db_pool.acquire.return_value.__aenter__.return_value
        service = BillingService(mock_db_pool)

        event = await service.record_usage(
            user_id=user_id,
            chatroom_id=chatroom_id,
            provider="openai",
            model="gpt-4o-mini",
            request_id="req-1",
            input_tokens=120,
            output_tokens=40,
            cost_in=Decimal("0.000018"),
            cost_out=Decimal("0.000024"),
        )

        conn.transaction.assert_called_once()
        ledger_call, rollup_call = conn.execute.await_args_list
        assert "INSERT INTO ai_usage_events" in ledger_call.args[0]
        assert ledger_call.args[1] == event.id
        assert ledger_call.args[7:] == ("req-1", 120, 40, Decimal("0.000018"), Decimal("0.000024"))

        rollup_sql = rollup_call.args[0]
        assert "ON CONFLICT (user_id, billing_month) DO UPDATE" in rollup_sql
        assert "monthly_user_costs.input_tokens + EXCLUDED.input_tokens" in rollup_sql
        assert rollup_call.args[1] == user_id
        assert rollup_call.args[2] == billing_month(event.event_time)

    @pytest.mark.asyncio
    async def test_failure_propagates(
        self, mock_db_pool: MagicMock, user_id: uuid.UUID, chatroom_id: uuid.UUID
    ) -> None:
        conn: AsyncMock = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.execute.side_effect = [None, ConnectionError("lost")]
        service = BillingService(mock_db_pool)

        with pytest.raises(ConnectionError):
            await service.record_usage(
                user_id, chatroom_id, "openai", "m", "req-2", 1, 1, Decimal("0"), Decimal("0")
            )


class TestMonthlyCost:
    @pytest.mark.asyncio
    async def test_month_normalized(self, mock_db_pool: MagicMock, user_id: uuid.UUID) -> None:
        conn: AsyncMock = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchrow.return_value = {
            "user_id": user_id,
            "billing_month": date(2025, 3, 1),
            "input_tokens": 10,
            "output_tokens": 5,
            "cost_in": Decimal("0.1"),
            "cost_out": Decimal("0.2"),
            "total_cost": Decimal("0.3"),
            "last_aggregated_at": None,
        }

        cost = await BillingService(mock_db_pool).get_monthly_cost(user_id, date(2025, 3, 20))

        assert cost is not None
        assert cost.total_cost == Decimal("0.3")
        assert conn.fetchrow.await_args.args[2] == date(2025, 3, 1)
