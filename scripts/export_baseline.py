"""
Export the current job to customer linkages as a reconciliation baseline.

Run at a known-good time and keep the file; feed it to
POST /api/v1/reconciliation/analyze later to find jobs that moved.

    python scripts/export_baseline.py baselines/2026-10-19.json
"""
import asyncio
import json
import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import async_session_maker, close_db
from app.services.reconciliation_service import ReconciliationService


async def export_baseline(path: str):
    async with async_session_maker() as db:
        baseline = await ReconciliationService(db).export_baseline()

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(baseline, handle, indent=2)

    print(f"Wrote {len(baseline)} job linkages to {path}")
    await close_db()


if __name__ == "__main__":
    default = f"baseline-{datetime.utcnow().strftime('%Y-%m-%d')}.json"
    asyncio.run(export_baseline(sys.argv[1] if len(sys.argv) > 1 else default))
