"""
Device Binding Tests
====================
Trusted device entity, the in-memory device store and DeviceService.
"""

from datetime import timedelta

import pytest

OWNER = "owner-hash-0001"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148"


def fingerprint(**overrides):
    from authgate_core.identity import DeviceFingerprint

    attrs = {"user_agent": IPHONE_UA, "platform": "iOS", "timezone": "Europe/Berlin"}
    attrs.update(overrides)
    return DeviceFingerprint.create(**attrs)


class TestTrustedDevice:
    """Tests for the device binding entity."""

    def test_create_is_trusted(self, t0):
        from authgate_core.identity import TrustedDevice

        fp = fingerprint()
        device = TrustedDevice.create(OWNER, fp, push_token="push-1", now=t0)

        assert device.id == fp.id
        assert device.is_trusted
        assert not device.is_revoked
        assert device.created_at == device.last_seen_at == t0

    def test_revoke_and_trust_again(self, t0):
        from authgate_core.identity import TrustedDevice

        device = TrustedDevice.create(OWNER, fingerprint(), now=t0)
        device.revoke(t0 + timedelta(minutes=5))

        assert device.is_revoked
        assert not device.is_trusted
        assert device.revoked_at == t0 + timedelta(minutes=5)

        device.trust()
        assert device.is_trusted
        assert device.revoked_at is None

    def test_is_stale(self, t0):
        from authgate_core.identity import TrustedDevice

        device = TrustedDevice.create(OWNER, fingerprint(), now=t0)

        assert not device.is_stale(now=t0 + timedelta(days=90))
        assert device.is_stale(now=t0 + timedelta(days=91))
        assert device.is_stale(max_days_inactive=7, now=t0 + timedelta(days=8))

    def test_persistence_record(self, t0):
        from authgate_core.identity import TrustedDevice

        device = TrustedDevice.create(OWNER, fingerprint(language="de-DE"), push_token="push-1", now=t0)
        device.revoke(t0 + timedelta(hours=1))

        record = device.to_persistence()
        restored = TrustedDevice.from_persistence(record)

        assert record["deviceId"] == device.id
        assert record["fingerprintHash"] == device.fingerprint.hash
        assert record["revokedAt"] == "2024-05-01T13:00:00.000000Z"
        assert restored.fingerprint.hash == device.fingerprint.hash
        assert restored.fingerprint.language == "de-DE"
        assert restored.push_token == "push-1"
        assert restored.revoked_at == device.revoked_at
        assert not restored.is_trusted


class TestInMemoryDeviceStore:
    """Tests for the dict-backed device store."""

    @pytest.mark.asyncio
    async def test_returns_copies(self, t0):
        from authgate_core.identity import TrustedDevice
        from authgate_core.stores import InMemoryDeviceStore

        store = InMemoryDeviceStore()
        device = TrustedDevice.create(OWNER, fingerprint(), now=t0)
        await store.upsert(device)

        loaded = await store.get(OWNER, device.id)
        loaded.revoke(t0)

        assert (await store.get(OWNER, device.id)).is_trusted

    @pytest.mark.asyncio
    async def test_lookups_scoped_to_owner(self, t0):
        from authgate_core.identity import TrustedDevice
        from authgate_core.stores import InMemoryDeviceStore

        store = InMemoryDeviceStore()
        device = TrustedDevice.create(OWNER, fingerprint(), now=t0)
        await store.upsert(device)

        assert await store.get("someone-else", device.id) is None
        assert await store.get_by_fingerprint("someone-else", device.fingerprint.hash) is None
        assert (await store.get_by_fingerprint(OWNER, device.fingerprint.hash)).id == device.id
        assert await store.list_by_owner("someone-else") == []

    @pytest.mark.asyncio
    async def test_revoke_and_delete(self, clock, t0):
        from authgate_core.identity import TrustedDevice
        from authgate_core.stores import InMemoryDeviceStore

        store = InMemoryDeviceStore(clock=clock)
        device = TrustedDevice.create(OWNER, fingerprint(), now=t0)
        await store.upsert(device)

        clock.advance(minutes=1)
        assert await store.revoke(OWNER, device.id) is True
        assert (await store.get(OWNER, device.id)).revoked_at == t0 + timedelta(minutes=1)
        assert await store.revoke(OWNER, "missing") is False

        assert await store.delete(OWNER, device.id) is True
        assert await store.delete(OWNER, device.id) is False


class TestDeviceService:
    """Tests for binding, recognition and revocation."""

    @pytest.fixture
    def service(self):
        from authgate_core.devices import DeviceService
        from authgate_core.stores import InMemoryDeviceStore

        return DeviceService(InMemoryDeviceStore())

    @pytest.mark.asyncio
    async def test_bind_new_device(self, service, t0):
        fp = fingerprint()

        device = await service.bind_device(OWNER, fp, push_token="push-1", now=t0)

        assert device.id == fp.id
        assert device.is_trusted
        assert [d.id for d in await service.list_trusted_devices(OWNER)] == [fp.id]

    @pytest.mark.asyncio
    async def test_same_device_rebinds_existing_binding(self, service, t0):
        first = await service.bind_device(OWNER, fingerprint(), now=t0)

        again = await service.bind_device(
            OWNER,
            fingerprint(language="de-DE"),
            push_token="push-2",
            now=t0 + timedelta(days=1),
        )

        assert again.id == first.id
        assert again.push_token == "push-2"
        assert again.fingerprint.language == "de-DE"
        assert again.last_seen_at == t0 + timedelta(days=1)
        assert len(await service.list_trusted_devices(OWNER)) == 1

    @pytest.mark.asyncio
    async def test_strict_bind_with_drifted_attributes_adds_device(self, service, t0):
        first = await service.bind_device(OWNER, fingerprint(), now=t0)

        second = await service.bind_device(OWNER, fingerprint(language="de-DE"), strict=True, now=t0)

        assert second.id != first.id
        assert len(await service.list_trusted_devices(OWNER)) == 2

    @pytest.mark.asyncio
    async def test_rebinding_revoked_device_restores_trust(self, service, t0):
        device = await service.bind_device(OWNER, fingerprint(), now=t0)
        assert await service.revoke_device(OWNER, device.id, now=t0) is True
        assert await service.list_trusted_devices(OWNER) == []

        rebound = await service.bind_device(OWNER, fingerprint(), now=t0 + timedelta(hours=1))

        assert rebound.id == device.id
        assert rebound.is_trusted

    @pytest.mark.asyncio
    async def test_recognize_only_trusted_devices(self, service, t0):
        device = await service.bind_device(OWNER, fingerprint(), now=t0)

        seen = await service.recognize_device(OWNER, fingerprint(), now=t0 + timedelta(hours=2))
        assert seen.id == device.id
        assert seen.last_seen_at == t0 + timedelta(hours=2)

        assert await service.recognize_device(OWNER, fingerprint(platform="Android")) is None
        assert await service.recognize_device("someone-else", fingerprint()) is None

        await service.revoke_device(OWNER, device.id, now=t0)
        assert await service.recognize_device(OWNER, fingerprint()) is None

    @pytest.mark.asyncio
    async def test_list_trusted_newest_first(self, service, t0):
        older = await service.bind_device(OWNER, fingerprint(platform="macOS"), now=t0)
        newer = await service.bind_device(OWNER, fingerprint(), now=t0 + timedelta(days=2))
        revoked = await service.bind_device(OWNER, fingerprint(platform="Android"), now=t0 + timedelta(days=3))
        await service.revoke_device(OWNER, revoked.id)

        assert [d.id for d in await service.list_trusted_devices(OWNER)] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_revoke_unknown_device(self, service):
        assert await service.revoke_device(OWNER, "missing") is False
