"""
In-Memory Stores
================
Process-local implementations of every store contract.

For development and testing only. Mutations run under a per-key
``asyncio.Lock`` and apply the same predicates as the shared backends.
"""

import asyncio
import copy
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..errors import ChallengeConflictError
from ..identity.device import TrustedDevice
from ..otp.challenge import OTPChallenge
from ..otp.hashing import verify_code_hash
from ..otp.models import ChallengeStatus, utcnow
from .base import (
    BlockStatus,
    BounceRecord,
    BounceStore,
    BounceType,
    ChallengeStore,
    ComplaintRecord,
    CounterStore,
    CounterValue,
    DenylistEntry,
    DenylistStore,
    DeviceStore,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class InMemoryCounterStore(CounterStore):
    """Fixed-window counters held in a dict."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._counters: Dict[str, CounterValue] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def increment(self, key: str, window_ttl_seconds: int) -> CounterValue:
        async with self._locks[key]:
            now = self._clock()
            counter = self._counters.get(key)

            if counter is None or now >= counter.expires_at:
                counter = CounterValue(
                    key=key,
                    count=0,
                    window_start=now,
                    expires_at=now + timedelta(seconds=window_ttl_seconds),
                )
                self._counters[key] = counter

            counter.count += 1
            return copy.copy(counter)

    async def get(self, key: str) -> Optional[CounterValue]:
        counter = self._counters.get(key)
        if counter is None:
            return None
        if self._clock() >= counter.expires_at:
            self._counters.pop(key, None)
            return None
        return copy.copy(counter)

    async def reset(self, key: str) -> None:
        self._counters.pop(key, None)


class InMemoryChallengeStore(ChallengeStore):
    """Challenges held in a dict keyed by id."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._challenges: Dict[str, OTPChallenge] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create(self, challenge: OTPChallenge) -> None:
        async with self._locks[challenge.id]:
            if challenge.id in self._challenges:
                raise ChallengeConflictError(f"Challenge {challenge.id} already exists")
            self._challenges[challenge.id] = copy.copy(challenge)
        logger.debug("Challenge stored", challenge_id=challenge.id)

    async def get_by_id(self, challenge_id: str) -> Optional[OTPChallenge]:
        challenge = self._challenges.get(challenge_id)
        return copy.copy(challenge) if challenge else None

    async def get_active_by_identifier(
        self,
        identifier_hash: str,
        now: Optional[datetime] = None,
    ) -> Optional[OTPChallenge]:
        now = now or self._clock()
        active = [
            c for c in self._challenges.values()
            if c.identifier.hash == identifier_hash
            and c.status == ChallengeStatus.PENDING
            and not c.is_expired(now)
        ]
        if not active:
            return None
        return copy.copy(max(active, key=lambda c: c.created_at))

    async def verify_and_consume(
        self,
        challenge_id: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> bool:
        async with self._locks[challenge_id]:
            now = now or self._clock()
            challenge = self._challenges.get(challenge_id)
            if challenge is None or challenge.status != ChallengeStatus.PENDING:
                return False

            challenge.attempts += 1
            challenge.last_attempt_at = now

            if not challenge.is_expired(now) and verify_code_hash(code, challenge.code_hash):
                challenge.status = ChallengeStatus.VERIFIED
                return True

            if challenge.is_expired(now):
                challenge.status = ChallengeStatus.EXPIRED
            elif challenge.attempts >= challenge.max_attempts:
                challenge.status = ChallengeStatus.FAILED
            return False

    async def increment_send_count(
        self,
        challenge_id: str,
        new_code_hash: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        async with self._locks[challenge_id]:
            now = now or self._clock()
            challenge = self._challenges.get(challenge_id)
            if challenge is None or not challenge.can_resend(now):
                return None

            challenge.resend_count += 1
            if new_code_hash is not None:
                challenge.code_hash = new_code_hash
                challenge.attempts = 0
            return challenge.resend_count

    async def delete_by_id(self, challenge_id: str) -> bool:
        async with self._locks[challenge_id]:
            existed = self._challenges.pop(challenge_id, None) is not None
        self._locks.pop(challenge_id, None)
        return existed

    async def mark_expired(self, challenge_id: str) -> bool:
        async with self._locks[challenge_id]:
            challenge = self._challenges.get(challenge_id)
            return challenge.mark_expired() if challenge else False


class InMemoryDenylistStore(DenylistStore):
    """Denylist held in a dict keyed by identifier hash."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._entries: Dict[str, DenylistEntry] = {}

    async def add(
        self,
        identifier_hash: str,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        self._entries[identifier_hash] = DenylistEntry(
            identifier_hash=identifier_hash,
            reason=reason,
            created_at=self._clock(),
            expires_at=expires_at,
        )

    async def remove(self, identifier_hash: str) -> bool:
        return self._entries.pop(identifier_hash, None) is not None

    async def is_blocked(self, identifier_hash: str) -> BlockStatus:
        entry = self._entries.get(identifier_hash)
        if entry is None:
            return BlockStatus(blocked=False)
        if entry.is_expired(self._clock()):
            self._entries.pop(identifier_hash, None)
            return BlockStatus(blocked=False)
        return BlockStatus(blocked=True, reason=entry.reason, expires_at=entry.expires_at)

    async def list(self, limit: int = 100) -> List[DenylistEntry]:
        now = self._clock()
        active = [e for e in self._entries.values() if not e.is_expired(now)]
        active.sort(key=lambda e: e.created_at, reverse=True)
        return active[:limit]


class InMemoryBounceStore(BounceStore):
    """Bounce and complaint history held in per-identifier lists."""

    def __init__(self):
        self._bounces: Dict[str, List[BounceRecord]] = defaultdict(list)
        self._complaints: Dict[str, List[ComplaintRecord]] = defaultdict(list)

    async def record_bounce(self, record: BounceRecord) -> None:
        self._bounces[record.identifier_hash].append(record)

    async def record_complaint(self, record: ComplaintRecord) -> None:
        self._complaints[record.identifier_hash].append(record)

    async def get_bounce_count(
        self,
        identifier_hash: str,
        bounce_type: Optional[BounceType] = None,
    ) -> int:
        records = self._bounces.get(identifier_hash, [])
        if bounce_type is None:
            return len(records)
        return sum(1 for r in records if r.bounce_type == bounce_type)

    async def get_complaint_count(self, identifier_hash: str) -> int:
        return len(self._complaints.get(identifier_hash, []))

    async def get_last_bounce(self, identifier_hash: str) -> Optional[BounceRecord]:
        records = self._bounces.get(identifier_hash)
        if not records:
            return None
        return max(records, key=lambda r: r.timestamp)

    async def get_last_complaint(self, identifier_hash: str) -> Optional[ComplaintRecord]:
        records = self._complaints.get(identifier_hash)
        if not records:
            return None
        return max(records, key=lambda r: r.timestamp)


class InMemoryDeviceStore(DeviceStore):
    """Device bindings held in a dict keyed by (owner id, device id)."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._devices: Dict[Tuple[str, str], TrustedDevice] = {}

    async def upsert(self, device: TrustedDevice) -> None:
        self._devices[(device.owner_id, device.id)] = copy.copy(device)

    async def get(self, owner_id: str, device_id: str) -> Optional[TrustedDevice]:
        device = self._devices.get((owner_id, device_id))
        return copy.copy(device) if device else None

    async def get_by_fingerprint(self, owner_id: str, fingerprint_hash: str) -> Optional[TrustedDevice]:
        for device in self._devices.values():
            if device.owner_id == owner_id and device.fingerprint.hash == fingerprint_hash:
                return copy.copy(device)
        return None

    async def list_by_owner(self, owner_id: str) -> List[TrustedDevice]:
        return [copy.copy(d) for d in self._devices.values() if d.owner_id == owner_id]

    async def revoke(self, owner_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        device = self._devices.get((owner_id, device_id))
        if device is None:
            return False
        device.revoke(now or self._clock())
        return True

    async def delete(self, owner_id: str, device_id: str) -> bool:
        return self._devices.pop((owner_id, device_id), None) is not None
