"""Seed demo delivery tasks and payouts for a delivery partner."""

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from delivery_engine.engine.lifecycle import TaskLifecycleEngine
from delivery_engine.models.actor import Actor, ActorRole
from delivery_engine.models.task import Task
from delivery_engine.state.manager import MirrorStore, actor_namespace


def demo_tasks() -> list[Task]:
    """Tasks offered to a partner on a fresh install."""
    now = datetime.now(timezone.utc)
    return [
        Task(
            id="T001",
            order_id="ORD-1001",
            pickup_location="Spice Garden, MG Road",
            drop_location="12 Residency Road, Apt 4B",
            delivery_fee=Decimal("60"),
            distance=3.2,
            confirmation_code="1234",
            vendor="Spice Garden",
            customer="Ravi Kumar",
            orderValue=540,
            pickupTime=(now + timedelta(minutes=15)).isoformat(),
        ),
        Task(
            id="T002",
            order_id="ORD-1002",
            pickup_location="Fresh Mart, Indiranagar",
            drop_location="88 CMH Road, 2nd Floor",
            delivery_fee=Decimal("45"),
            distance=2.1,
            confirmation_code="5678",
            vendor="Fresh Mart",
            customer="Anita Sharma",
            orderValue=320,
            pickupTime=(now + timedelta(minutes=25)).isoformat(),
        ),
        Task(
            id="T003",
            order_id="ORD-1003",
            pickup_location="Bake House, Koramangala",
            drop_location="5 Church Street",
            delivery_fee=Decimal("80"),
            distance=5.6,
            confirmation_code="9101",
            vendor="Bake House",
            customer="John Mathew",
            orderValue=760,
            pickupTime=(now + timedelta(minutes=40)).isoformat(),
        ),
    ]


async def seed_partner(actor_id: str, with_payouts: bool) -> None:
    """Seed available tasks (and optionally payouts) for one partner."""
    print(f"Seeding delivery data for {actor_id}...")

    store = MirrorStore(namespace=actor_namespace(actor_id))
    await store.connect()

    engine = TaskLifecycleEngine(Actor(id=actor_id, role=ActorRole.DELIVERY), store)
    await engine.load()

    result = await engine.seed_available(demo_tasks())
    for task in result.value or []:
        print(f"  ✓ Task {task.id}: {task.pickup_location} -> {task.drop_location}")

    if with_payouts:
        now = datetime.now(timezone.utc)
        for days_ago, amount in ((7, Decimal("500")), (2, Decimal("250"))):
            payout = await engine.record_payout(amount, now - timedelta(days=days_ago))
            print(f"  ✓ Payout {payout.value.amount} on {payout.value.date.date()}")

    if result.warnings:
        print(f"  ⚠️  Warnings: {', '.join(w.value for w in result.warnings)}")

    await engine.close()
    await store.disconnect()
    print("✓ Delivery data seeded successfully\n")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("actor_id", help="Delivery partner id")
    parser.add_argument("--payouts", action="store_true", help="Also seed two payouts")
    args = parser.parse_args()

    asyncio.run(seed_partner(args.actor_id, args.payouts))


if __name__ == "__main__":
    main()
