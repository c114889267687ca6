"""
Billing recorder: append-only usage ledger plus monthly per-user rollup.

The ledger insert and the monthly upsert commit together in one transaction.
Monthly totals are incremented atomically inside the UPDATE, so concurrent
recordings for the same user and month sum correctly under any interleaving.
"""

from __future__ import annotations

import uuid

from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

import asyncpg

from models.chat_models import AiUsageEvent, MonthlyUserCost
from utils.db_utils import transaction
from utils.logger import logger
from utils.metrics import billing_records_total

COST_QUANTUM = Decimal("0.000001")
TOKENS_PER_PRICE_UNIT = Decimal("1000")


def compute_cost(tokens: int, price_per_1k: Decimal) -> Decimal:
    """Cost of ``tokens`` at a per-1000-token price, quantized to 6 places."""
    cost = (Decimal(tokens) / TOKENS_PER_PRICE_UNIT) * price_per_1k
    return cost.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


def billing_month(moment: datetime) -> date:
    """First day of the UTC month containing ``moment``."""
    return moment.astimezone(UTC).date().replace(day=1)


class BillingService:
    """Records billable token usage."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def record_usage(
        self,
        user_id: UUID,
        chatroom_id: UUID,
        provider: str,
        model: str,
        request_id: str,
        input_tokens: int,
        output_tokens: int,
        cost_in: Decimal,
        cost_out: Decimal,
    ) -> AiUsageEvent:
        """Insert one ledger row and fold it into the monthly rollup atomically."""
        event = AiUsageEvent(
            id=uuid.uuid4(),
            event_time=datetime.now(UTC),
            user_id=user_id,
            chatroom_id=chatroom_id,
            provider=provider,
            model=model,
            request_id=request_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_in=cost_in,
            cost_out=cost_out,
        )

        async with transaction(self.pool) as conn:
            await conn.execute(
                """
                INSERT INTO ai_usage_events (
                    id, event_time, user_id, chatroom_id, provider, model,
                    request_id, input_tokens, output_tokens, cost_in, cost_out
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                """,
                event.id,
                event.event_time,
                user_id,
                chatroom_id,
                provider,
                model,
                request_id,
                input_tokens,
                output_tokens,
                cost_in,
                cost_out,
            )
            await conn.execute(
                """
                INSERT INTO monthly_user_costs (
                    user_id, billing_month, input_tokens, output_tokens,
                    cost_in, cost_out, total_cost, last_aggregated_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $5 + $6, $7)
                ON CONFLICT (user_id, billing_month) DO UPDATE
                SET input_tokens = monthly_user_costs.input_tokens + EXCLUDED.input_tokens,
                    output_tokens = monthly_user_costs.output_tokens + EXCLUDED.output_tokens,
                    cost_in = monthly_user_costs.cost_in + EXCLUDED.cost_in,
                    cost_out = monthly_user_costs.cost_out + EXCLUDED.cost_out,
                    total_cost = monthly_user_costs.cost_in + EXCLUDED.cost_in
                               + monthly_user_costs.cost_out + EXCLUDED.cost_out,
                    last_aggregated_at = EXCLUDED.last_aggregated_at
                """,
                user_id,
                billing_month(event.event_time),
                input_tokens,
                output_tokens,
                cost_in,
                cost_out,
                event.event_time,
            )

        billing_records_total.labels(provider=provider).inc()
        logger.debug(
            f"Usage recorded: {input_tokens} in / {output_tokens} out, cost {cost_in + cost_out}",
            chatroom_id=str(chatroom_id),
            request_id=request_id,
        )
        return event

    async def get_monthly_cost(self, user_id: UUID, month: date) -> MonthlyUserCost | None:
        """Rollup row for a user; ``month`` may be any day of the month."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, billing_month, input_tokens, output_tokens,
                       cost_in, cost_out, total_cost, last_aggregated_at
                FROM monthly_user_costs
                WHERE user_id = $1 AND billing_month = $2
                """,
                user_id,
                month.replace(day=1),
            )
        return MonthlyUserCost.from_record(row) if row else None
