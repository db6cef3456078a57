from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class TTSChunk:
    """
    A chunk of synthesized audio.

    `audio_bytes` is PCM16 mono 16kHz, ready to relay to the caller.
    """

    audio_bytes: bytes
    is_final: bool = False
    timestamp: float = field(default_factory=time.time)
