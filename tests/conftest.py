"""
Pytest configuration and fixtures.
"""

import json
import os
from typing import Any, Dict, List, Optional, Sequence, Union
from unittest.mock import patch

import pytest

from src.receptionist.caller_protocol import CallerChannel
from src.receptionist.extract import LeadCapture
from src.receptionist.intent import DEFAULT_INTENT, Intent
from src.receptionist.tts_types import TTSChunk


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PORT": "8080",
        "LOG_LEVEL": "DEBUG",
        "DEEPGRAM_API_KEY": "test_deepgram_key",
        "LLM_PROVIDER": "groq",
        "GROQ_API_KEY": "test_groq_key",
        "GROQ_MODEL": "llama-3.3-70b-versatile",
        "TTS_PROVIDER": "deepgram",
        "VALIDATE_MODEL_ON_STARTUP": "false",
        "BUSINESS_NAME": "Melbourne Athletic Development",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.receptionist.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@pytest.fixture
def config():
    from src.receptionist.config import get_config
    return get_config()


class RecordingTransport:
    """Stands in for the caller WebSocket's send methods."""

    def __init__(self) -> None:
        self.frames: List[Union[str, bytes]] = []
        self.fail_text = False

    async def send_text(self, message: str) -> None:
        if self.fail_text:
            raise RuntimeError("socket closed")
        self.frames.append(message)

    async def send_bytes(self, data: bytes) -> None:
        self.frames.append(data)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(f) for f in self.frames if isinstance(f, str)]

    @property
    def audio(self) -> List[bytes]:
        return [f for f in self.frames if isinstance(f, bytes)]

    def event_types(self) -> List[str]:
        return [e["type"] for e in self.events]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def channel(transport: RecordingTransport) -> CallerChannel:
    return CallerChannel(send_text=transport.send_text, send_bytes=transport.send_bytes)


class FakeRecognizer:
    """Recognizer sink + STT client double with controllable connection state."""

    def __init__(self, on_transcript=None, on_open=None, config=None, auto_open: bool = True):
        self._on_transcript = on_transcript
        self._on_open = on_open
        self.auto_open = auto_open
        self.is_open = False
        self.is_closed = False
        self.sent: List[bytes] = []
        self.connect_calls = 0
        self.disconnected = False

    async def send_audio(self, audio_bytes: bytes) -> None:
        self.sent.append(audio_bytes)

    async def connect(self) -> bool:
        self.connect_calls += 1
        if not self.auto_open or self.is_closed:
            return False
        await self.open()
        return True

    async def open(self) -> None:
        self.is_open = True
        if self._on_open:
            await self._on_open()

    async def disconnect(self) -> None:
        self.is_open = False
        self.is_closed = True
        self.disconnected = True

    async def emit(self, text: str) -> None:
        await self._on_transcript(text)


class ScriptedLLM:
    """
    Generation double. Each call consumes one script entry: a list of
    fragments, or an exception raised when the stream is requested.
    """

    def __init__(self, scripts: Sequence[Any]):
        self._scripts = list(scripts)
        self.prompts: List[str] = []

    async def generate_streaming(self, prompt: str):
        self.prompts.append(prompt)
        script = self._scripts.pop(0) if self._scripts else []
        if isinstance(script, BaseException):
            raise script
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeTTS:
    """Synthesis double: one or more audio units per text."""

    def __init__(self, units_per_text: int = 1):
        self.units_per_text = units_per_text
        self.texts: List[str] = []

    async def synthesize_streaming(self, text: str):
        self.texts.append(text)
        for i in range(self.units_per_text):
            yield TTSChunk(audio_bytes=f"{text}|{i}".encode("utf-8"))
        yield TTSChunk(audio_bytes=b"", is_final=True)


class FakeClassifier:
    def __init__(self, intents: Optional[Dict[str, Intent]] = None, default: Intent = DEFAULT_INTENT):
        self.intents = intents or {}
        self.default = default
        self.calls: List[str] = []

    async def classify(self, text: str) -> Intent:
        self.calls.append(text)
        return self.intents.get(text, self.default)


class FakeExtractor:
    def __init__(self, results: Optional[Dict[str, Optional[LeadCapture]]] = None):
        self.results = results or {}
        self.calls: List[str] = []

    async def extract(self, text: str) -> Optional[LeadCapture]:
        self.calls.append(text)
        return self.results.get(text)


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    return FakeRecognizer()
