import time

import pytest

from conftest import FakeTransport, MemoryStore
from toolchat.config import Settings
from toolchat.schemas.link import SessionLink
from toolchat.schemas.sync import SyncMessage
from toolchat.services.mirror_service import CrossChannelMirror

LINK = SessionLink(
    web_session_id="web_abc",
    whatsapp_session_id="whatsapp_15551234567",
    phone_number="+15551234567",
    tool_id="math-tutor",
    linked_at="2025-01-01T00:00:00+00:00",
)


def _mirror(transport=None):
    store = MemoryStore("sync")
    transport = transport or FakeTransport()
    return CrossChannelMirror(store, transport, Settings(sync_freshness_minutes=10)), store, transport


def _now_ms() -> int:
    return int(time.time() * 1000)


async def _put(store, key, **fields):
    record = SyncMessage(direction="whatsapp-to-web", web_session_id="web_abc", tool="math-tutor", **fields)
    await store.set_json(key, record.to_storage())


class TestMirrorToWeb:
    @pytest.mark.asyncio
    async def test_round_trip_is_consumed_once(self):
        mirror, store, _ = _mirror()

        assert await mirror.mirror_to_web(LINK, "what is 2+2?", "4", tool="math-tutor") is True
        assert len(store.data) == 2

        first = await mirror.poll("web_abc")
        second = await mirror.poll("web_abc")

        assert len(first) == 1
        assert first[0].user_message == "what is 2+2?"
        assert first[0].ai_response == "4"
        assert first[0].tool == "math-tutor"
        assert first[0].source == "whatsapp"
        assert second == []
        assert store.data == {}

    @pytest.mark.asyncio
    async def test_other_sessions_are_untouched(self):
        mirror, store, _ = _mirror()
        await mirror.mirror_to_web(LINK, "hi", "hello")

        assert await mirror.poll("web_other") == []
        assert len(store.data) == 2

    @pytest.mark.asyncio
    async def test_half_written_exchange_is_held_back(self):
        mirror, store, _ = _mirror()
        base = _now_ms()
        await _put(store, f"whatsapp-mirror-user-{base}-aaaaaa", user_message="hi", timestamp=base, message_type="user")

        assert await mirror.poll("web_abc") == []
        assert len(store.data) == 1

        await _put(store, f"whatsapp-mirror-ai-{base}-aaaaaa", ai_response="hello", timestamp=base + 1, message_type="ai")
        exchanges = await mirror.poll("web_abc")

        assert [(e.user_message, e.ai_response) for e in exchanges] == [("hi", "hello")]
        assert exchanges[0].timestamp == base

    @pytest.mark.asyncio
    async def test_exchanges_in_same_millisecond_are_both_delivered(self, monkeypatch):
        mirror, store, _ = _mirror()
        base = _now_ms()
        monkeypatch.setattr("toolchat.services.mirror_service._now_ms", lambda: base)

        await mirror.mirror_to_web(LINK, "first", "answer one")
        await mirror.mirror_to_web(LINK, "second", "answer two")
        exchanges = await mirror.poll("web_abc")

        assert sorted((e.user_message, e.ai_response) for e in exchanges) == [
            ("first", "answer one"),
            ("second", "answer two"),
        ]
        assert store.data == {}

    @pytest.mark.asyncio
    async def test_pair_suffix_must_match(self):
        mirror, store, _ = _mirror()
        base = _now_ms()
        await _put(store, f"whatsapp-mirror-user-{base}-aaaaaa", user_message="hi", timestamp=base, message_type="user")
        await _put(store, f"whatsapp-mirror-ai-{base}-cccccc", ai_response="other", timestamp=base + 1, message_type="ai")

        assert await mirror.poll("web_abc") == []
        assert len(store.data) == 2

    @pytest.mark.asyncio
    async def test_stale_records_are_ignored(self):
        mirror, store, _ = _mirror()
        base = _now_ms() - 11 * 60 * 1000
        await _put(store, f"whatsapp-mirror-user-{base}-bbbbbb", user_message="old", timestamp=base, message_type="user")
        await _put(store, f"whatsapp-mirror-ai-{base}-bbbbbb", ai_response="old", timestamp=base + 1, message_type="ai")

        assert await mirror.poll("web_abc") == []
        assert len(store.data) == 2

    @pytest.mark.asyncio
    async def test_legacy_combined_record(self):
        mirror, store, _ = _mirror()
        base = _now_ms()
        await _put(store, f"whatsapp-mirror-{base}", user_message="q", ai_response="a", timestamp=base)

        exchanges = await mirror.poll("web_abc")

        assert [(e.user_message, e.ai_response) for e in exchanges] == [("q", "a")]
        assert store.data == {}

    @pytest.mark.asyncio
    async def test_exchanges_sorted_oldest_first(self):
        mirror, store, _ = _mirror()
        base = _now_ms()
        await _put(store, "whatsapp-mirror-late", user_message="second", ai_response="2", timestamp=base)
        await _put(store, "whatsapp-mirror-early", user_message="first", ai_response="1", timestamp=base - 5000)

        exchanges = await mirror.poll("web_abc")

        assert [e.user_message for e in exchanges] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_storage_failure_returns_false(self):
        mirror, store, _ = _mirror()
        store.fail_writes = True

        assert await mirror.mirror_to_web(LINK, "hi", "hello") is False


class TestMirrorToWhatsApp:
    @pytest.mark.asyncio
    async def test_pushes_both_halves_and_records(self):
        mirror, store, transport = _mirror()

        assert await mirror.mirror_to_whatsapp(LINK, "hello from web", "hi there") is True

        assert transport.sent == [
            ("+15551234567", "[From Web] hello from web"),
            ("+15551234567", "hi there"),
        ]
        assert len([key for key in store.data if key.startswith("web-mirror-")]) == 2

    @pytest.mark.asyncio
    async def test_transport_failure_never_raises(self):
        mirror, store, _ = _mirror(transport=FakeTransport(fail=True))

        assert await mirror.mirror_to_whatsapp(LINK, "hello", "hi") is False
        assert store.data == {}

    @pytest.mark.asyncio
    async def test_web_records_are_not_polled_back(self):
        mirror, _, _ = _mirror()
        await mirror.mirror_to_whatsapp(LINK, "hello", "hi")

        assert await mirror.poll("web_abc") == []
