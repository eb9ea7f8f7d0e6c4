"""Generated post storage."""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.post import Post
from services.errors import PersistenceFailure


async def create_post(
    user_id: str,
    db: AsyncSession,
    *,
    content: str,
    platform: str,
    metadata: Optional[Dict[str, Any]] = None,
    status: str = "draft",
) -> Post:
    post = Post(
        user_id=user_id,
        content=content,
        platform=platform,
        status=status,
        metadata_json=metadata or {},
    )
    try:
        db.add(post)
        await db.commit()
        await db.refresh(post)
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceFailure(f"Failed to save generated post: {exc}") from exc
    return post


async def delete_post(post_id: str, db: AsyncSession) -> None:
    await db.execute(delete(Post).where(Post.id == post_id))
    await db.commit()


def serialize_post(post: Post) -> Dict[str, Any]:
    metadata = post.metadata_json or {}
    return {
        "id": post.id,
        "content": post.content,
        "platform": post.platform,
        "status": post.status,
        "hashtags": metadata.get("hashtags", []),
        "best_time_to_post": metadata.get("best_time_to_post"),
        "total_tokens_used": metadata.get("total_tokens_used"),
        "generated_at": post.created_at.isoformat() if post.created_at else metadata.get("generated_at"),
    }
