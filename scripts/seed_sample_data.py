"""
Sample data seeding script for the SLA engine.
Creates a demo workspace with policies, tracked targets and a few lifecycle
facts so the dashboard, event log and SSE stream have something to show.
"""
import asyncio
import sys
from pathlib import Path
from datetime import timedelta
import random

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sla_engine.core.clock import utcnow
from sla_engine.core.database import AsyncSessionLocal, Base, engine
from sla_engine.models.sla import SlaPolicy
from sla_engine.services.sla_service import SlaService


# Sample data configurations
WORKSPACE_ID = "demo-workspace"

POLICIES_DATA = [
    {
        "name": "Critical incidents",
        "applies_to": "ticket",
        "conditions": {"priority": "critical"},
        "response_time_minutes": 15,
        "resolution_time_minutes": 240,
        "business_hours_only": False,
        "priority": 100,
        "escalation_rules": [
            {"level": 1, "threshold_percent": 50, "action": {"type": "notify"}},
            {"level": 2, "threshold_percent": 90, "action": {"type": "log"}},
            {"level": 3, "action": {"type": "log"}},
        ],
    },
    {
        "name": "High priority",
        "applies_to": "ticket",
        "conditions": {"priority": ["high", "urgent"]},
        "response_time_minutes": 60,
        "resolution_time_minutes": 480,
        "priority": 50,
        "escalation_rules": [
            {"level": 1, "track": "resolution", "threshold_percent": 75, "action": {"type": "notify"}},
        ],
    },
    {
        "name": "Standard support",
        "applies_to": "ticket",
        "response_time_minutes": 240,
        "resolution_time_minutes": 2400,
        "business_hours": {"start": "09:00", "end": "18:00", "timezone": "Asia/Seoul", "workdays": [1, 2, 3, 4, 5]},
        "priority": 0,
    },
]

TICKET_PRIORITIES = ["critical", "high", "urgent", "medium", "low"]


async def create_policies(db: AsyncSession):
    """Create the demo SLA policies."""
    print("Creating SLA policies...")
    service = SlaService(db)

    for data in POLICIES_DATA:
        result = await db.execute(
            select(SlaPolicy).where(
                SlaPolicy.workspace_id == WORKSPACE_ID,
                SlaPolicy.name == data["name"]
            )
        )
        if result.scalar_one_or_none():
            print(f"  ✓ Policy already exists: {data['name']}")
            continue

        policy = await service.create_policy(WORKSPACE_ID, data)
        print(f"  ✓ Created policy: {policy.name}")


async def create_targets(db: AsyncSession, num_targets: int = 30):
    """Track sample tickets opened over the last two days."""
    print(f"\nTracking {num_targets} sample tickets...")
    service = SlaService(db)
    now = utcnow()
    tracked = []

    for i in range(num_targets):
        created_at = now - timedelta(minutes=random.randint(5, 2880))
        target_id = f"TKT-{i + 1:04d}"
        update = await service.on_target_created(
            workspace_id=WORKSPACE_ID,
            target_type="ticket",
            target_id=target_id,
            created_at=created_at,
            attributes={"priority": random.choice(TICKET_PRIORITIES)},
        )
        if update is None:
            continue
        tracked.append((target_id, created_at))

        roll = random.random()
        if roll < 0.5:
            await service.on_first_response(target_id, created_at + timedelta(minutes=random.randint(1, 90)))
        if roll < 0.25:
            await service.on_resolved(target_id, created_at + timedelta(minutes=random.randint(90, 600)))
        elif roll > 0.9:
            await service.pause_target(target_id, created_at + timedelta(minutes=30), reason="Waiting on customer")

    print(f"✓ Tracked {len(tracked)} tickets")
    return tracked


async def main():
    """Main seeding function."""
    print("=" * 60)
    print("SLA Engine - Sample Data Seeding Script")
    print("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        try:
            await create_policies(db)
            tracked = await create_targets(db)

            result = await SlaService(db).recompute_pending()

            print("\n" + "=" * 60)
            print("✓ Sample data seeding completed successfully!")
            print("=" * 60)
            print(f"\nWorkspace: {WORKSPACE_ID}")
            print(f"  - {len(POLICIES_DATA)} policies")
            print(f"  - {len(tracked)} tracked tickets")
            print(f"  - {len(result.updates)} instances recomputed")
            print("=" * 60)

        except Exception as e:
            print(f"\n✗ Error during seeding: {str(e)}")
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(main())
