"""Speech-to-text for spoken answers via local Whisper (faster-whisper)."""

from __future__ import annotations

import logging
import os
import time
from tempfile import NamedTemporaryFile
from typing import Any, Dict, List, Optional

os.environ.setdefault("NUMBA_CACHE_DIR", "/tmp/numba")

from faster_whisper import WhisperModel

WHISPER_MODEL = os.getenv("WHISPER_MODEL", "medium")
WHISPER_DEVICE = os.getenv("WHISPER_DEVICE", "cpu")
WHISPER_COMPUTE_TYPE = os.getenv("WHISPER_COMPUTE_TYPE") or (
    "float16" if WHISPER_DEVICE not in ("cpu", "auto-cpu") else "int8"
)
LOG = logging.getLogger("interview.stt")

whisper_model: Optional[WhisperModel] = None


def load_model() -> Optional[WhisperModel]:
    global whisper_model
    try:
        whisper_model = WhisperModel(WHISPER_MODEL, device=WHISPER_DEVICE, compute_type=WHISPER_COMPUTE_TYPE)
        LOG.info("Whisper loaded %s on %s (%s)", WHISPER_MODEL, WHISPER_DEVICE, WHISPER_COMPUTE_TYPE)
    except Exception as exc:  # pragma: no cover - model download / runtime failures
        # Leave STT disabled so the rest of the app still boots.
        whisper_model = None
        LOG.warning("Whisper failed to load model %s: %s", WHISPER_MODEL, exc)
    return whisper_model


def transcribe(payload: bytes, suffix: str = ".webm", language: Optional[str] = None) -> Dict[str, Any]:
    """
    Transcribe an uploaded audio clip.

    Returns {"transcript", "latency_ms", "duration", "language", "num_segments"}
    or {"error": ...}; the caller decides how to surface errors.
    """
    if whisper_model is None:
        return {"error": "whisper_not_loaded"}
    if not payload:
        LOG.warning("STT received empty payload")
        return {"error": "empty_audio"}

    started = time.perf_counter()
    with NamedTemporaryFile(delete=False, suffix=suffix or ".webm") as tmp:
        tmp.write(payload)
        tmp_path = tmp.name

    try:
        segments, info = whisper_model.transcribe(
            tmp_path,
            beam_size=4,
            language=language or "en",
            vad_filter=True,
            condition_on_previous_text=False,
        )
        texts: List[str] = []
        for seg in segments:
            seg_text = seg.text.strip()
            if seg_text:
                texts.append(seg_text)
    except Exception as exc:
        LOG.warning("STT failed: %s", exc)
        return {"error": f"stt_failed: {exc}"}
    finally:
        try:
            os.remove(tmp_path)
        except OSError:
            pass

    return {
        "transcript": " ".join(texts).strip(),
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "duration": info.duration,
        "language": info.language,
        "num_segments": len(texts),
    }
