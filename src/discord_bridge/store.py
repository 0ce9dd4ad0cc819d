"""Persistent store: room entries plus the transport's persistence backend."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlalchemy import Column, MetaData, String, Table, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

metadata = MetaData()

room_entries = Table(
    "room_entries",
    metadata,
    Column("id", String, primary_key=True),
    Column("matrix_id", String, index=True),
    Column("remote_id", String, index=True),
)

remote_room_data = Table(
    "remote_room_data",
    metadata,
    Column("room_id", String, primary_key=True),
    Column("discord_guild", String, nullable=False),
    Column("discord_channel", String, nullable=False),
    Column("discord_name", String),
    Column("discord_topic", String),
)

registered_users = Table(
    "registered_users",
    metadata,
    Column("user_id", String, primary_key=True),
)

completed_transactions = Table(
    "completed_transactions",
    metadata,
    Column("txn_id", String, primary_key=True),
)


@dataclass
class RoomEntry:
    """One Matrix room <-> Discord channel link."""

    id: str
    matrix_id: str | None
    remote_id: str | None
    remote: dict[str, Any] = field(default_factory=dict)


def database_url(database: dict[str, Any]) -> str:
    """SQLAlchemy URL from the database config section."""
    conn = database.get("connString")
    if conn:
        conn = str(conn)
        if conn.startswith("postgres://"):
            conn = "postgresql://" + conn[len("postgres://") :]
        if conn.startswith("postgresql://"):
            conn = "postgresql+asyncpg://" + conn[len("postgresql://") :]
        return conn
    filename = database.get("filename") or "discord.db"
    return f"sqlite+aiosqlite:///{filename}"


class BridgeStore:
    """Async store. Constructing it does no I/O; init() connects and creates tables."""

    def __init__(self, database: dict[str, Any], *, engine: AsyncEngine | None = None) -> None:
        self._url = database_url(database)
        self._engine = engine or create_async_engine(self._url)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Store ready ({})", self._engine.url.get_backend_name())

    async def close(self) -> None:
        await self._engine.dispose()

    async def get_entries_by_matrix_id(self, matrix_id: str) -> list[RoomEntry]:
        """Room entries linked to a Matrix room, with their Discord data."""
        stmt = (
            select(room_entries, remote_room_data)
            .outerjoin(remote_room_data, remote_room_data.c.room_id == room_entries.c.remote_id)
            .where(room_entries.c.matrix_id == matrix_id)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        entries = []
        for row in rows:
            remote: dict[str, Any] = {}
            if row["discord_channel"] is not None:
                remote = {
                    "discord_guild": row["discord_guild"],
                    "discord_channel": row["discord_channel"],
                    "discord_name": row["discord_name"],
                    "discord_topic": row["discord_topic"],
                }
            entries.append(RoomEntry(id=row["id"], matrix_id=row["matrix_id"], remote_id=row["remote_id"], remote=remote))
        return entries

    async def add_room_entry(self, matrix_id: str, guild_id: str, channel_id: str, **extra: str) -> RoomEntry:
        """Link a Matrix room to a Discord channel."""
        entry_id = str(uuid.uuid4())
        remote_id = f"{guild_id}_{channel_id}"
        remote = {
            "discord_guild": guild_id,
            "discord_channel": channel_id,
            "discord_name": extra.get("name"),
            "discord_topic": extra.get("topic"),
        }
        async with self._engine.begin() as conn:
            await conn.execute(room_entries.insert().values(id=entry_id, matrix_id=matrix_id, remote_id=remote_id))
            existing = await conn.execute(select(remote_room_data.c.room_id).where(remote_room_data.c.room_id == remote_id))
            if existing.first() is None:
                await conn.execute(remote_room_data.insert().values(room_id=remote_id, **remote))
        return RoomEntry(id=entry_id, matrix_id=matrix_id, remote_id=remote_id, remote=remote)

    # Transport persistence backend

    async def is_user_registered(self, user_id: str) -> bool:
        async with self._engine.connect() as conn:
            row = await conn.execute(select(registered_users.c.user_id).where(registered_users.c.user_id == user_id))
            return row.first() is not None

    async def add_registered_user(self, user_id: str) -> None:
        if await self.is_user_registered(user_id):
            return
        async with self._engine.begin() as conn:
            await conn.execute(registered_users.insert().values(user_id=user_id))

    async def is_transaction_completed(self, txn_id: str) -> bool:
        async with self._engine.connect() as conn:
            row = await conn.execute(
                select(completed_transactions.c.txn_id).where(completed_transactions.c.txn_id == txn_id)
            )
            return row.first() is not None

    async def set_transaction_completed(self, txn_id: str) -> None:
        if await self.is_transaction_completed(txn_id):
            return
        async with self._engine.begin() as conn:
            await conn.execute(completed_transactions.insert().values(txn_id=txn_id))
