"""Repository over users, bots, conversations and messages."""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from zapgpt.core.types import AIModel
from zapgpt.log import get_logger
from zapgpt.storage.database import Database
from zapgpt.storage.models import ApiKeys, Bot, Conversation, Message, User

logger = get_logger(__name__)

_BOT_UPDATABLE = frozenset(
    {"name", "model", "prompt", "is_active", "is_connected", "message_count"}
)


def _check_model(model: str) -> None:
    if model not in {m.value for m in AIModel}:
        supported = ", ".join(m.value for m in AIModel)
        raise ValueError(f"Unsupported AI model '{model}' (supported: {supported})")


def _new_id() -> str:
    return uuid.uuid4().hex


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Repository:
    """CRUD used by the orchestration engine and the HTTP relay."""

    def __init__(self, db: Database):
        self._db = db

    # -- users -------------------------------------------------------------

    async def create_user(
        self,
        name: str,
        email: str,
        plan: str = "starter",
        api_keys: ApiKeys | None = None,
    ) -> User:
        user_id = _new_id()
        keys = api_keys or ApiKeys()
        await self._db.conn.execute(
            "INSERT INTO users (id, name, email, plan, api_keys_json) VALUES (?, ?, ?, ?, ?)",
            (user_id, name, email, plan, json.dumps(keys.to_dict())),
        )
        await self._db.conn.commit()
        user = await self.find_user_by_id(user_id)
        assert user is not None
        return user

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        cursor = await self._db.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return self._row_to_user(row) if row else None

    async def update_user_api_keys(self, user_id: str, api_keys: ApiKeys) -> Optional[User]:
        """Merge the given keys over the stored ones."""
        user = await self.find_user_by_id(user_id)
        if user is None:
            return None
        merged = {**user.api_keys.to_dict(), **api_keys.to_dict()}
        await self._db.conn.execute(
            """UPDATE users SET api_keys_json = ?,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE id = ?""",
            (json.dumps(merged), user_id),
        )
        await self._db.conn.commit()
        return await self.find_user_by_id(user_id)

    # -- bots --------------------------------------------------------------

    async def create_bot(
        self,
        user_id: str,
        name: str,
        model: str,
        prompt: str,
        session_name: str | None = None,
    ) -> Bot:
        if not user_id:
            raise ValueError("Cannot create a bot without an owning user")
        _check_model(model)
        bot_id = _new_id()
        session_name = session_name or f"zapgpt_{user_id}_{int(time.time() * 1000)}"
        await self._db.conn.execute(
            """INSERT INTO bots (id, user_id, name, model, prompt, session_name)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (bot_id, user_id, name, model, prompt, session_name),
        )
        await self._db.conn.commit()
        bot = await self.find_bot_by_id(bot_id)
        assert bot is not None
        return bot

    async def find_bot_by_id(self, bot_id: str) -> Optional[Bot]:
        cursor = await self._db.conn.execute("SELECT * FROM bots WHERE id = ?", (bot_id,))
        row = await cursor.fetchone()
        return self._row_to_bot(row) if row else None

    async def find_bots_by_user_id(self, user_id: str) -> list[Bot]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM bots WHERE user_id = ? ORDER BY created_at", (user_id,)
        )
        rows = await cursor.fetchall()
        return [self._row_to_bot(row) for row in rows]

    async def list_bots(self) -> list[Bot]:
        cursor = await self._db.conn.execute("SELECT * FROM bots ORDER BY created_at")
        rows = await cursor.fetchall()
        return [self._row_to_bot(row) for row in rows]

    async def update_bot(self, bot_id: str, **fields: Any) -> Optional[Bot]:
        """Update the given columns of a bot and return the fresh record."""
        unknown = set(fields) - _BOT_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update bot fields: {', '.join(sorted(unknown))}")
        if "model" in fields:
            _check_model(fields["model"])
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            values = [int(v) if isinstance(v, bool) else v for v in fields.values()]
            await self._db.conn.execute(
                f"""UPDATE bots SET {assignments},
                        updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                    WHERE id = ?""",
                (*values, bot_id),
            )
            await self._db.conn.commit()
        return await self.find_bot_by_id(bot_id)

    async def increment_bot_message_count(self, bot_id: str, amount: int = 1) -> None:
        await self._db.conn.execute(
            """UPDATE bots SET message_count = message_count + ?,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE id = ?""",
            (amount, bot_id),
        )
        await self._db.conn.commit()

    async def delete_bot(self, bot_id: str) -> bool:
        cursor = await self._db.conn.execute("DELETE FROM bots WHERE id = ?", (bot_id,))
        await self._db.conn.commit()
        return cursor.rowcount > 0

    # -- conversations -----------------------------------------------------

    async def upsert_conversation(
        self,
        bot_id: str,
        user_id: str,
        contact_name: str,
        contact_phone: str,
        last_message: str,
        last_message_at: datetime | None = None,
        unread_increment: int = 1,
        message_increment: int = 1,
    ) -> Conversation:
        """Create the (bot, contact) conversation or bump its counters."""
        last_at = (last_message_at or datetime.now(timezone.utc)).isoformat()
        await self._db.conn.execute(
            """INSERT INTO conversations
               (id, bot_id, user_id, contact_name, contact_phone,
                last_message, last_message_at, unread_count, message_count)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(bot_id, contact_phone) DO UPDATE SET
                   contact_name = excluded.contact_name,
                   last_message = excluded.last_message,
                   last_message_at = excluded.last_message_at,
                   unread_count = unread_count + excluded.unread_count,
                   message_count = message_count + excluded.message_count""",
            (
                _new_id(),
                bot_id,
                user_id,
                contact_name,
                contact_phone,
                last_message,
                last_at,
                unread_increment,
                message_increment,
            ),
        )
        await self._db.conn.commit()
        cursor = await self._db.conn.execute(
            "SELECT * FROM conversations WHERE bot_id = ? AND contact_phone = ?",
            (bot_id, contact_phone),
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row)

    async def find_conversations_by_bot_id(self, bot_id: str) -> list[Conversation]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM conversations WHERE bot_id = ? ORDER BY last_message_at DESC",
            (bot_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    # -- messages ----------------------------------------------------------

    async def create_message(self, conversation_id: str, role: str, content: str) -> int:
        """Append a message and return its ID."""
        cursor = await self._db.conn.execute(
            "INSERT INTO messages (conversation_id, role, content) VALUES (?, ?, ?)",
            (conversation_id, role, content),
        )
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def list_messages(self, conversation_id: str, limit: int = 100) -> list[Message]:
        """Messages of a conversation in creation order."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM messages WHERE conversation_id = ?
               ORDER BY id ASC LIMIT ?""",
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            plan=row["plan"],
            api_keys=ApiKeys.from_dict(json.loads(row["api_keys_json"] or "{}")),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_bot(row) -> Bot:
        return Bot(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            model=row["model"],
            prompt=row["prompt"],
            session_name=row["session_name"],
            is_active=bool(row["is_active"]),
            is_connected=bool(row["is_connected"]),
            message_count=row["message_count"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            bot_id=row["bot_id"],
            user_id=row["user_id"],
            contact_name=row["contact_name"],
            contact_phone=row["contact_phone"],
            last_message=row["last_message"],
            last_message_at=_parse_ts(row["last_message_at"]),
            unread_count=row["unread_count"],
            message_count=row["message_count"],
            created_at=_parse_ts(row["created_at"]),
        )
