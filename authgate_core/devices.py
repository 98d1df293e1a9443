"""
Device Binding
==============
Bind, recognize, revoke and list trusted devices per owner.

Binding is idempotent per physical device: a fingerprint that matches an
existing binding for the owner re-trusts that binding instead of adding a
new one.
"""

from datetime import datetime
from typing import List, Optional

import structlog

from .identity import DeviceFingerprint, TrustedDevice
from .otp.models import utcnow
from .stores.base import DeviceStore

logger = structlog.get_logger(__name__)


class DeviceService:
    """Trusted device administration on top of a DeviceStore."""

    def __init__(self, store: DeviceStore):
        self.store = store

    async def _find_match(
        self,
        owner_id: str,
        fingerprint: DeviceFingerprint,
        strict: bool,
    ) -> Optional[TrustedDevice]:
        exact = await self.store.get_by_fingerprint(owner_id, fingerprint.hash)
        if exact is not None or strict:
            return exact

        for device in await self.store.list_by_owner(owner_id):
            if device.fingerprint.matches(fingerprint):
                return device
        return None

    async def bind_device(
        self,
        owner_id: str,
        fingerprint: DeviceFingerprint,
        push_token: Optional[str] = None,
        strict: bool = False,
        now: Optional[datetime] = None,
    ) -> TrustedDevice:
        """
        Bind a device to an owner as trusted.

        Args:
            owner_id: Opaque owner id
            fingerprint: Fingerprint reported by the client
            push_token: Optional push notification token
            strict: Require a full fingerprint hash match to reuse a binding
            now: Binding time

        Returns:
            The new or re-trusted binding
        """
        now = now or utcnow()
        device = await self._find_match(owner_id, fingerprint, strict)

        if device is None:
            device = TrustedDevice.create(owner_id, fingerprint, push_token=push_token, now=now)
            logger.info("Device bound", owner_id=owner_id[:16], device_id=device.id)
        else:
            if device.fingerprint.hash != fingerprint.hash:
                device.fingerprint = DeviceFingerprint.from_existing(
                    device.id,
                    user_agent=fingerprint.user_agent,
                    platform=fingerprint.platform,
                    timezone=fingerprint.timezone,
                    language=fingerprint.language,
                    screen_resolution=fingerprint.screen_resolution,
                    entropy=fingerprint.entropy,
                )
            device.trust()
            device.mark_seen(now)
            if push_token:
                device.push_token = push_token
            logger.info("Device re-bound", owner_id=owner_id[:16], device_id=device.id)

        await self.store.upsert(device)
        return device

    async def recognize_device(
        self,
        owner_id: str,
        fingerprint: DeviceFingerprint,
        strict: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[TrustedDevice]:
        """Trusted binding matching the fingerprint, marked as seen. None if unknown or revoked."""
        device = await self._find_match(owner_id, fingerprint, strict)
        if device is None or not device.is_trusted:
            return None

        device.mark_seen(now)
        await self.store.upsert(device)
        return device

    async def revoke_device(self, owner_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        revoked = await self.store.revoke(owner_id, device_id, now)
        logger.info("Device revoked", owner_id=owner_id[:16], device_id=device_id, found=revoked)
        return revoked

    async def list_trusted_devices(self, owner_id: str) -> List[TrustedDevice]:
        """Trusted bindings, most recently seen first."""
        devices = [d for d in await self.store.list_by_owner(owner_id) if d.is_trusted]
        devices.sort(key=lambda d: d.last_seen_at, reverse=True)
        return devices
