"""
Tests for speech synthesis providers and the TTS manager.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.receptionist.audio import write_wav_mono_pcm16
from src.receptionist.tts import TTSManager
from src.receptionist.tts_providers.base import TTSProvider
from src.receptionist.tts_providers.deepgram import DeepgramTTS
from src.receptionist.tts_providers.openai_tts import OpenAITTS
from src.receptionist.tts_types import TTSChunk


async def _collect(gen):
    return [chunk async for chunk in gen]


class TestDeepgramTTS:
    """Tests for the Deepgram Speak provider."""

    @pytest.mark.asyncio
    async def test_streams_pcm_and_sends_text(self, config):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.content
            return httpx.Response(200, content=b"\x01\x00\x02\x00")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        tts = DeepgramTTS(config, client=client)

        chunks = await _collect(tts.synthesize_streaming("Hello there"))

        audio = b"".join(c.audio_bytes for c in chunks)
        assert audio == b"\x01\x00\x02\x00"
        assert chunks[-1].is_final
        assert seen["auth"] == "Token test_deepgram_key"
        assert b"Hello there" in seen["body"]
        assert tts.metrics.total_requests == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_yields_nothing(self, config):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, content=b"bad key"))
        )
        tts = DeepgramTTS(config, client=client)

        assert await _collect(tts.synthesize_streaming("Hello")) == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_contained(self, config):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        tts = DeepgramTTS(config, client=client)

        assert await _collect(tts.synthesize_streaming("Hello")) == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_blank_text_is_skipped(self, config):
        tts = DeepgramTTS(config, client=MagicMock())

        assert await _collect(tts.synthesize_streaming("   ")) == []


@pytest.mark.asyncio
async def test_openai_tts_converts_wav_to_pcm16(config):
    pcm_24k = b"\x00\x01" * 2400
    response = MagicMock()
    response.content = write_wav_mono_pcm16(pcm_24k, sample_rate=24000)
    client = MagicMock()
    client.audio.speech.create = AsyncMock(return_value=response)

    tts = OpenAITTS(config, client=client)
    chunks = await _collect(tts.synthesize_streaming("Hello"))

    assert len(chunks) == 1
    assert len(chunks[0].audio_bytes) == 3200
    assert client.audio.speech.create.await_args.kwargs["response_format"] == "wav"


@pytest.mark.asyncio
async def test_openai_tts_failure_yields_nothing(config):
    client = MagicMock()
    client.audio.speech.create = AsyncMock(side_effect=RuntimeError("quota"))

    tts = OpenAITTS(config, client=client)

    assert await _collect(tts.synthesize_streaming("Hello")) == []


class ExplodingProvider(TTSProvider):
    async def synthesize_streaming(self, text):
        yield TTSChunk(audio_bytes=b"\x01\x00")
        raise RuntimeError("provider crashed")


class TestTTSManager:
    """Tests for the per-call TTS manager."""

    @pytest.mark.asyncio
    async def test_provider_failure_never_raises(self, config):
        manager = TTSManager(config, provider=ExplodingProvider())

        chunks = await _collect(manager.synthesize_streaming("Hello"))

        assert [c.audio_bytes for c in chunks] == [b"\x01\x00"]

    @pytest.mark.asyncio
    async def test_selects_provider_from_config(self, config):
        manager = TTSManager(config)
        await manager.start()

        assert manager.deepgram_metrics is not None
        await manager.stop()

    @pytest.mark.asyncio
    async def test_unknown_provider_yields_nothing(self, config):
        from dataclasses import replace

        manager = TTSManager(replace(config, tts_provider="nope"))

        assert await _collect(manager.synthesize_streaming("Hello")) == []

    @pytest.mark.asyncio
    async def test_closing_manager_stream_closes_provider_stream(self, config):
        class TrackingProvider(TTSProvider):
            def __init__(self):
                self.closed = False

            async def synthesize_streaming(self, text):
                try:
                    for _ in range(5):
                        yield TTSChunk(audio_bytes=b"\x01\x00")
                finally:
                    self.closed = True

        provider = TrackingProvider()
        manager = TTSManager(config, provider=provider)

        stream = manager.synthesize_streaming("Hello")
        first = await stream.__anext__()
        await stream.aclose()

        assert first.audio_bytes == b"\x01\x00"
        assert provider.closed
