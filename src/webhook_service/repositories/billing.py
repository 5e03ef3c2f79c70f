"""Order and subscription state touched by payment provider callbacks.

The ``orders`` and ``users`` tables belong to the marketplace; only the
payment columns are written here.
"""
from __future__ import annotations

from asyncpg import Pool  # type: ignore[import-untyped]

from webhook_service.repositories.base import BaseRepository


class BillingRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def mark_order_paid(self, order_id: str) -> int:
        status = await self._execute(
            """
            UPDATE orders
            SET status = 'paid', payment_status = 'completed', updated_at = now()
            WHERE id::text = $1
            """,
            order_id,
        )
        return self._affected(status)

    async def mark_order_payment_failed(self, order_id: str) -> int:
        status = await self._execute(
            """
            UPDATE orders
            SET status = 'payment_failed', updated_at = now()
            WHERE id::text = $1
            """,
            order_id,
        )
        return self._affected(status)

    async def activate_subscription(self, customer_id: str, subscription_id: str | None = None) -> int:
        status = await self._execute(
            """
            UPDATE users
            SET subscription_status = 'active',
                subscription_id = COALESCE($2, subscription_id),
                updated_at = now()
            WHERE stripe_customer_id = $1
            """,
            customer_id,
            subscription_id,
        )
        return self._affected(status)

    async def cancel_subscription(self, customer_id: str) -> int:
        status = await self._execute(
            """
            UPDATE users
            SET subscription_status = 'cancelled', updated_at = now()
            WHERE stripe_customer_id = $1
            """,
            customer_id,
        )
        return self._affected(status)
