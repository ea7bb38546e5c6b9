import io
from typing import List, Optional

import numpy as np
import soundfile as sf

from speech_coach.models import AudioArtifact


def to_mono_int16(indata: np.ndarray) -> bytes:
    """
    Convert a sounddevice callback block into mono PCM16 little-endian bytes.
    Uses the LEFT channel only when more than one channel is captured.
    """
    x = np.asarray(indata)

    if x.ndim == 2 and x.shape[1] >= 1:
        mono = x[:, 0]
    else:
        mono = x.reshape(-1)

    if mono.dtype == np.int16:
        f = mono.astype(np.float32) / 32768.0
    else:
        f = mono.astype(np.float32)

    f = np.clip(f, -1.0, 1.0)
    return (f * 32767.0).astype("<i2").tobytes(order="C")


def chunks_to_wav(chunks: List[bytes], sample_rate: int) -> Optional[AudioArtifact]:
    """Flush buffered PCM16 chunks into one playable 16-bit WAV artifact.

    Returns None when nothing was captured.
    """
    pcm = b"".join(chunks)
    if len(pcm) < 2:
        return None
    # drop a dangling odd byte rather than misalign every sample
    pcm = pcm[: len(pcm) - (len(pcm) % 2)]
    samples = np.frombuffer(pcm, dtype="<i2")

    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
    return AudioArtifact(
        wav_bytes=buf.getvalue(),
        sample_rate=sample_rate,
        duration_seconds=round(len(samples) / float(sample_rate), 3),
    )
