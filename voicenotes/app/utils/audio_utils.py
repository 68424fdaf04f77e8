import base64
import io
import logging
from typing import Iterable

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)


def to_data_url(data: bytes, mime_type: str) -> str:
    """Encode bytes as a base64 data: URL."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def format_duration(duration_ms: int) -> str:
    """Render a duration as m:ss."""
    total_seconds = max(0, int(duration_ms // 1000))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}:{seconds:02d}"


def concatenate_chunks(chunks: Iterable[np.ndarray], channels: int = 1, dtype: str = "int16") -> np.ndarray:
    """Join captured blocks into one (frames, channels) array."""
    chunk_list = [np.asarray(chunk, dtype=dtype).reshape(-1, channels) for chunk in chunks]
    if not chunk_list:
        return np.zeros((0, channels), dtype=dtype)
    return np.concatenate(chunk_list, axis=0)


def encode_wav(frames: np.ndarray, sample_rate: int) -> bytes:
    """Encode PCM frames as a 16-bit WAV file in memory."""
    buffer = io.BytesIO()
    sf.write(buffer, frames, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def frames_duration_ms(frame_count: int, sample_rate: int) -> int:
    if sample_rate <= 0:
        return 0
    return int(frame_count * 1000 / sample_rate)
