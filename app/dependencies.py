"""
Workshop Ledger - FastAPI Dependencies

Shared dependencies for database sessions and the acting operator.

Authentication is handled by an access-control layer in front of this
service; it forwards the operator's identity in the X-Actor-Id header.
"""

from typing import Optional

from fastapi import Header

from app.database import get_async_session

__all__ = ["get_async_session", "get_actor_id"]


async def get_actor_id(
    x_actor_id: Optional[str] = Header(None, max_length=100, description="Acting operator"),
) -> Optional[str]:
    """Identity recorded as changed_by / reviewed_by / resolved_by."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None
