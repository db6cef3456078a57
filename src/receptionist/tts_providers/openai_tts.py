from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Optional

import structlog

from src.receptionist.audio import wav_bytes_to_pcm16
from src.receptionist.config import get_config
from src.receptionist.tts_providers.base import TTSProvider
from src.receptionist.tts_types import TTSChunk

logger = structlog.get_logger(__name__)


class OpenAITTS(TTSProvider):
    """
    OpenAI Text-to-Speech provider (non-streaming).

    This provider synthesizes a full WAV and yields it as one PCM16 16kHz chunk.
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[Any] = None):
        self.config = config or get_config()
        self._client = client
        self._cancelled = False
        self._inflight: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        self._cancelled = True
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI  # Local import to keep module import light

            self._client = AsyncOpenAI(api_key=self.config.openai_api_key)
        return self._client

    async def _generate_wav(self, text: str) -> bytes:
        resp = await self._get_client().audio.speech.create(
            model=self.config.openai_tts_model,
            voice=self.config.openai_tts_voice,
            input=text,
            response_format="wav",
        )
        # SDKs have varied over time; handle several shapes.
        data = getattr(resp, "content", None)
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
        read = getattr(resp, "read", None)
        if callable(read):
            result = read()
            if asyncio.iscoroutine(result):
                result = await result
            return bytes(result)
        return bytes(resp)

    async def synthesize_streaming(self, text: str) -> AsyncGenerator[TTSChunk, None]:
        if not text or not text.strip():
            return

        self._cancelled = False
        task = asyncio.create_task(self._generate_wav(text))
        self._inflight = task

        try:
            wav_bytes = await task
        except asyncio.CancelledError:
            if self._cancelled:
                return
            raise
        except Exception as e:
            logger.warning("OpenAI TTS failed", error=str(e))
            return
        finally:
            if self._inflight is task:
                self._inflight = None

        if self._cancelled:
            return

        try:
            pcm = wav_bytes_to_pcm16(wav_bytes)
        except Exception as e:
            logger.warning("OpenAI TTS returned unreadable audio", error=str(e))
            return

        yield TTSChunk(audio_bytes=pcm, is_final=True)
