"""
SQL Stores
==========
SQLAlchemy (async) persistence for challenges and trusted devices.

Verification and resend are single conditional ``UPDATE`` statements; the
affected row count tells the caller whether the condition held.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, List, Optional

import structlog

from sqlalchemy import Boolean, DateTime, Integer, String, case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..errors import ChallengeConflictError
from ..identity import DeviceFingerprint, Identifier, IdentifierType, TrustedDevice
from ..otp.challenge import OTPChallenge
from ..otp.hashing import hash_code
from ..otp.models import ChallengeChannel, ChallengeIntent, ChallengeStatus, utcnow
from .base import ChallengeStore, DeviceStore

logger = structlog.get_logger(__name__)

PENDING = ChallengeStatus.PENDING.value


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class ChallengeRow(Base):
    __tablename__ = "auth_challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    identifier_hash: Mapped[str] = mapped_column(String(64), index=True)
    identifier_value: Mapped[str] = mapped_column(String(320))
    identifier_type: Mapped[str] = mapped_column(String(16))
    channel: Mapped[str] = mapped_column(String(16))
    intent: Mapped[str] = mapped_column(String(32))
    code_hash: Mapped[str] = mapped_column(String(64))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer)
    resend_count: Mapped[int] = mapped_column(Integer, default=0)
    max_resends: Mapped[int] = mapped_column(Integer)
    ip_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class DeviceRow(Base):
    __tablename__ = "trusted_devices"

    owner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    device_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    fingerprint_hash: Mapped[str] = mapped_column(String(64), index=True)
    user_agent: Mapped[str] = mapped_column(String(512))
    platform: Mapped[str] = mapped_column(String(64))
    timezone: Mapped[str] = mapped_column(String(64))
    language: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    screen_resolution: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    entropy: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    trusted: Mapped[bool] = mapped_column(Boolean, default=True)
    push_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Database:
    """
    Async engine and session factory.

    One instance per application, created at startup and closed at shutdown.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_pre_ping: bool = True,
        echo: bool = False,
    ):
        """
        Args:
            database_url: Async connection string (postgresql+asyncpg://..., sqlite+aiosqlite://...)
            pool_size: Connection pool size (ignored for SQLite)
            max_overflow: Max overflow connections (ignored for SQLite)
            pool_pre_ping: Enable connection health checks
            echo: Log SQL statements
        """
        engine_options = {"pool_pre_ping": pool_pre_ping, "echo": echo}
        if not database_url.startswith("sqlite"):
            engine_options.update(pool_size=pool_size, max_overflow=max_overflow)

        self.engine: AsyncEngine = create_async_engine(database_url, **engine_options)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine initialized", dialect=self.engine.dialect.name)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session that commits on success and rolls back on exception.

        Usage:
            async with db.session() as session:
                result = await session.execute(...)
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine. Call during application shutdown."""
        await self.engine.dispose()
        logger.info("Database engine closed")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite stores the wall-clock digits only, so every bound value must be UTC
    if value is None:
        return None
    return _aware(value).astimezone(timezone.utc)


def _to_row(challenge: OTPChallenge) -> ChallengeRow:
    return ChallengeRow(
        id=challenge.id,
        identifier_hash=challenge.identifier.hash,
        identifier_value=challenge.identifier.value,
        identifier_type=challenge.identifier.type.value,
        channel=challenge.channel.value,
        intent=challenge.intent.value,
        code_hash=challenge.code_hash,
        expires_at=_utc(challenge.expires_at),
        attempts=challenge.attempts,
        max_attempts=challenge.max_attempts,
        resend_count=challenge.resend_count,
        max_resends=challenge.max_resends,
        ip_hash=challenge.ip_hash,
        device_id=challenge.device_id,
        status=challenge.status.value,
        created_at=_utc(challenge.created_at),
        last_attempt_at=_utc(challenge.last_attempt_at),
    )


def _from_row(row: ChallengeRow) -> OTPChallenge:
    return OTPChallenge(
        id=row.id,
        identifier=Identifier(value=row.identifier_value, type=IdentifierType(row.identifier_type)),
        channel=ChallengeChannel(row.channel),
        intent=ChallengeIntent(row.intent),
        code_hash=row.code_hash,
        expires_at=_aware(row.expires_at),
        created_at=_aware(row.created_at),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        resend_count=row.resend_count,
        max_resends=row.max_resends,
        status=ChallengeStatus(row.status),
        ip_hash=row.ip_hash,
        device_id=row.device_id,
        last_attempt_at=_aware(row.last_attempt_at),
    )


class SQLChallengeStore(ChallengeStore):
    """Challenge store backed by any SQLAlchemy async dialect."""

    def __init__(self, database: Database):
        self.db = database

    async def create(self, challenge: OTPChallenge) -> None:
        try:
            async with self.db.session() as session:
                session.add(_to_row(challenge))
        except IntegrityError as e:
            raise ChallengeConflictError(f"Challenge {challenge.id} already exists") from e

    async def get_by_id(self, challenge_id: str) -> Optional[OTPChallenge]:
        async with self.db.session() as session:
            row = await session.get(ChallengeRow, challenge_id)
            return _from_row(row) if row else None

    async def get_active_by_identifier(
        self,
        identifier_hash: str,
        now: Optional[datetime] = None,
    ) -> Optional[OTPChallenge]:
        now = _utc(now or utcnow())
        stmt = (
            select(ChallengeRow)
            .where(
                ChallengeRow.identifier_hash == identifier_hash,
                ChallengeRow.status == PENDING,
                ChallengeRow.expires_at > now,
            )
            .order_by(ChallengeRow.created_at.desc())
            .limit(1)
        )
        async with self.db.session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _from_row(row) if row else None

    async def verify_and_consume(
        self,
        challenge_id: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Consume the challenge if the code matches.

        Args:
            challenge_id: Challenge id
            code: Plain code or magic-link token id
            now: Evaluation time

        Returns:
            True for exactly one caller per challenge
        """
        now = _utc(now or utcnow())

        consume = (
            update(ChallengeRow)
            .where(
                ChallengeRow.id == challenge_id,
                ChallengeRow.status == PENDING,
                ChallengeRow.expires_at > now,
                ChallengeRow.code_hash == hash_code(code),
            )
            .values(
                status=ChallengeStatus.VERIFIED.value,
                attempts=ChallengeRow.attempts + 1,
                last_attempt_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        record_miss = (
            update(ChallengeRow)
            .where(ChallengeRow.id == challenge_id, ChallengeRow.status == PENDING)
            .values(
                attempts=ChallengeRow.attempts + 1,
                last_attempt_at=now,
                status=case(
                    (ChallengeRow.expires_at <= now, ChallengeStatus.EXPIRED.value),
                    (ChallengeRow.attempts + 1 >= ChallengeRow.max_attempts, ChallengeStatus.FAILED.value),
                    else_=ChallengeRow.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )

        async with self.db.session() as session:
            result = await session.execute(consume)
            if result.rowcount == 1:
                logger.info("Challenge consumed", challenge_id=challenge_id)
                return True

            await session.execute(record_miss)
            return False

    async def increment_send_count(
        self,
        challenge_id: str,
        new_code_hash: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        now = _utc(now or utcnow())

        values = {"resend_count": ChallengeRow.resend_count + 1}
        if new_code_hash is not None:
            values.update(code_hash=new_code_hash, attempts=0)

        stmt = (
            update(ChallengeRow)
            .where(
                ChallengeRow.id == challenge_id,
                ChallengeRow.status == PENDING,
                ChallengeRow.expires_at > now,
                ChallengeRow.resend_count < ChallengeRow.max_resends,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self.db.session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                return None
            count = await session.scalar(
                select(ChallengeRow.resend_count).where(ChallengeRow.id == challenge_id)
            )
            return int(count)

    async def delete_by_id(self, challenge_id: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                delete(ChallengeRow)
                .where(ChallengeRow.id == challenge_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def mark_expired(self, challenge_id: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                update(ChallengeRow)
                .where(ChallengeRow.id == challenge_id, ChallengeRow.status == PENDING)
                .values(status=ChallengeStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


def _device_row(device: TrustedDevice) -> DeviceRow:
    fingerprint = device.fingerprint
    return DeviceRow(
        owner_id=device.owner_id,
        device_id=device.id,
        fingerprint_hash=fingerprint.hash,
        user_agent=fingerprint.user_agent,
        platform=fingerprint.platform,
        timezone=fingerprint.timezone,
        language=fingerprint.language,
        screen_resolution=fingerprint.screen_resolution,
        entropy=fingerprint.entropy,
        trusted=device.trusted,
        push_token=device.push_token,
        created_at=_utc(device.created_at),
        last_seen_at=_utc(device.last_seen_at),
        revoked_at=_utc(device.revoked_at),
    )


def _device_from_row(row: DeviceRow) -> TrustedDevice:
    fingerprint = DeviceFingerprint.from_existing(
        row.device_id,
        user_agent=row.user_agent,
        platform=row.platform,
        timezone=row.timezone,
        language=row.language,
        screen_resolution=row.screen_resolution,
        entropy=row.entropy,
    )
    return TrustedDevice(
        owner_id=row.owner_id,
        fingerprint=fingerprint,
        trusted=row.trusted,
        created_at=_aware(row.created_at),
        last_seen_at=_aware(row.last_seen_at),
        push_token=row.push_token,
        revoked_at=_aware(row.revoked_at),
    )


class SQLDeviceStore(DeviceStore):
    """Trusted devices in one row per (owner id, device id)."""

    def __init__(self, database: Database):
        self.db = database

    async def upsert(self, device: TrustedDevice) -> None:
        async with self.db.session() as session:
            await session.merge(_device_row(device))

    async def get(self, owner_id: str, device_id: str) -> Optional[TrustedDevice]:
        async with self.db.session() as session:
            row = await session.get(DeviceRow, (owner_id, device_id))
            return _device_from_row(row) if row else None

    async def get_by_fingerprint(self, owner_id: str, fingerprint_hash: str) -> Optional[TrustedDevice]:
        async with self.db.session() as session:
            row = await session.scalar(
                select(DeviceRow)
                .where(DeviceRow.owner_id == owner_id, DeviceRow.fingerprint_hash == fingerprint_hash)
                .limit(1)
            )
            return _device_from_row(row) if row else None

    async def list_by_owner(self, owner_id: str) -> List[TrustedDevice]:
        async with self.db.session() as session:
            rows = await session.scalars(select(DeviceRow).where(DeviceRow.owner_id == owner_id))
            return [_device_from_row(row) for row in rows]

    async def revoke(self, owner_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                update(DeviceRow)
                .where(DeviceRow.owner_id == owner_id, DeviceRow.device_id == device_id)
                .values(trusted=False, revoked_at=_utc(now or utcnow()))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def delete(self, owner_id: str, device_id: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                delete(DeviceRow)
                .where(DeviceRow.owner_id == owner_id, DeviceRow.device_id == device_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
