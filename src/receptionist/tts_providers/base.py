from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncGenerator

from src.receptionist.tts_types import TTSChunk


class TTSProvider(ABC):
    @abstractmethod
    async def synthesize_streaming(self, text: str) -> AsyncGenerator[TTSChunk, None]:
        raise NotImplementedError

    def cancel(self) -> None:
        return None

    async def close(self) -> None:
        return None
