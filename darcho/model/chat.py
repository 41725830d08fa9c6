from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import func, or_, and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .db import Message, Order, User
from ..helpers import to_iso


def message_to_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "senderId": m.sender_id,
        "receiverId": m.receiver_id,
        "orderId": m.order_id,
        "message": m.message,
        "isRead": m.is_read,
        "createdAt": to_iso(m.created_at),
    }


async def list_conversations(
    db: AsyncSession, user_id: int
) -> Tuple[List[Dict[str, Any]], int]:
    """Group every message the user sent or received by counterpart.

    Returns (conversations newest first, total unread).
    """
    rows = (await db.execute(
        select(Message)
        .where(or_(Message.sender_id == user_id,
                   Message.receiver_id == user_id))
        .options(
            selectinload(Message.sender),
            selectinload(Message.receiver),
            selectinload(Message.order),
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
    )).scalars().all()

    grouped: Dict[int, Dict[str, Any]] = {}
    for m in rows:
        outgoing = m.sender_id == user_id
        other = m.receiver if outgoing else m.sender
        conv = grouped.get(other.id)
        if conv is None:
            conv = {
                "userId": other.id,
                "name": other.full_name,
                "role": other.role,
                "lastMessage": m.message,
                "lastMessageTime": to_iso(m.created_at),
                "unreadCount": 0,
                "orderNumber": (
                    m.order.order_number if m.order is not None else None
                ),
            }
            grouped[other.id] = conv
        if not m.is_read and not outgoing:
            conv["unreadCount"] += 1

    conversations = list(grouped.values())
    unread = sum(c["unreadCount"] for c in conversations)
    return conversations, unread


async def send_message(
    db: AsyncSession,
    sender_id: int,
    receiver_id: Any,
    text: Optional[str],
    *,
    receiver_role: str,
    order_id: Any = None,
) -> Message:
    if not receiver_id or not text or not str(text).strip():
        raise HTTPException(
            400,
            detail=f"{receiver_role.capitalize()} ID and message are "
                   "required",
        )
    try:
        rid = int(receiver_id)
    except (TypeError, ValueError):
        raise HTTPException(400, detail="Invalid receiver id")

    receiver = await db.get(User, rid)
    if receiver is None or receiver.role != receiver_role:
        raise HTTPException(
            404, detail=f"{receiver_role.capitalize()} not found"
        )

    oid = None
    if order_id:
        try:
            oid = int(order_id)
        except (TypeError, ValueError):
            raise HTTPException(400, detail="Invalid order id")
        if await db.get(Order, oid) is None:
            raise HTTPException(404, detail="Order not found")

    msg = Message(
        sender_id=sender_id,
        receiver_id=rid,
        order_id=oid,
        message=str(text).strip(),
        is_read=False,
    )
    db.add(msg)
    await db.commit()
    return msg


async def get_thread(
    db: AsyncSession, user_id: int, other_id: int
) -> List[Message]:
    """Messages between two users, oldest first. Marks incoming ones read."""
    if await db.get(User, other_id) is None:
        raise HTTPException(404, detail="User not found")
    await db.execute(
        update(Message)
        .where(Message.sender_id == other_id,
               Message.receiver_id == user_id,
               Message.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    rows = (await db.execute(
        select(Message)
        .where(or_(
            and_(Message.sender_id == user_id,
                 Message.receiver_id == other_id),
            and_(Message.sender_id == other_id,
                 Message.receiver_id == user_id),
        ))
        .order_by(Message.created_at, Message.id)
        .execution_options(populate_existing=True)
    )).scalars().all()
    return list(rows)


async def unread_count(db: AsyncSession, user_id: int) -> int:
    return int((await db.execute(
        select(func.count(Message.id))
        .where(Message.receiver_id == user_id, Message.is_read.is_(False))
    )).scalar_one())
