from typing import List, Optional

import pytest

from toolchat.config import Settings
from toolchat.dependencies import ServiceContainer
from toolchat.services.llm import LLMProvider, LLMProviderError, LLMResponse
from toolchat.services.llm_gateway import SUMMARY_PROMPT
from toolchat.services.whatsapp_transport import TransportError
from toolchat.storage.base import KeyValueStore, StoreEntry


class FakeProvider(LLMProvider):
    """Routes calls by mode: classifier, summary or regular chat."""

    def __init__(self, chat_reply: str = "Here is my answer.", classifier_reply: str = "none", summary_reply: str = "A short summary."):
        self.chat_reply = chat_reply
        self.classifier_reply = classifier_reply
        self.summary_reply = summary_reply
        self.fail_chat = False
        self.fail_classifier = False
        self.calls: List[dict] = []

    def mode_of(self, messages: List[dict]) -> str:
        system = messages[0]["content"] if messages and messages[0]["role"] == "system" else ""
        if system.startswith("You are a tool classifier"):
            return "classify"
        if system == SUMMARY_PROMPT:
            return "summary"
        return "chat"

    def calls_of(self, mode: str) -> List[dict]:
        return [call for call in self.calls if call["mode"] == mode]

    async def generate(self, messages, model=None, temperature=0.7, max_tokens=1000) -> LLMResponse:
        mode = self.mode_of(messages)
        self.calls.append(
            {"mode": mode, "messages": messages, "model": model, "temperature": temperature, "max_tokens": max_tokens}
        )
        if mode == "classify":
            if self.fail_classifier:
                raise LLMProviderError("classifier down")
            return LLMResponse(content=self.classifier_reply, model=model or "gpt-4o-mini")
        if mode == "summary":
            return LLMResponse(content=self.summary_reply, model=model or "gpt-4o-mini")
        if self.fail_chat:
            raise LLMProviderError("provider down", status_code=503)
        return LLMResponse(
            content=self.chat_reply,
            model=model or "gpt-4o-mini",
            usage={"prompt_tokens": 40, "completion_tokens": 20},
        )


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[tuple] = []

    async def send_message(self, phone_number: str, text: str) -> List[str]:
        if self.fail:
            raise TransportError("Twilio credentials not configured")
        self.sent.append((phone_number, text))
        return [f"SM{len(self.sent)}"]

    async def aclose(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    def __init__(self, namespace: str = "test"):
        self.namespace = namespace
        self.data: dict = {}
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        item = self.data.get(key)
        return item[0] if item else None

    async def set(self, key: str, value: str, metadata: Optional[dict] = None) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.data[key] = (value, metadata or {})

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def list(self, prefix: Optional[str] = None) -> List[StoreEntry]:
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return [
            StoreEntry(key=key, metadata=meta)
            for key, (_value, meta) in sorted(self.data.items())
            if not prefix or key.startswith(prefix)
        ]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_backend="local",
        storage_dir=str(tmp_path / "blobs"),
        openai_api_key="test-key",
        admin_password="admin-secret",
        twilio_account_sid=None,
        twilio_auth_token=None,
        twilio_phone_number=None,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def container(settings, provider, transport):
    return ServiceContainer.build(settings, provider=provider, transport=transport)

