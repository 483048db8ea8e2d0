"""Application configuration loaded from environment variables.

A ``.env`` file in the working directory is loaded first when present.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from voice_bridge.core.constants import AudioConstants


def _env_str(key: str, default: str) -> str:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def _env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    try:
        return int(v)
    except ValueError as e:
        raise ValueError(f"{key} must be an int, got {v!r}") from e


def _env_opt_int(key: str) -> Optional[int]:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return None
    return _env_int(key, 0)


def _env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ValueError(f"{key} must be a float, got {v!r}") from e


@dataclass(frozen=True)
class ServerConfig:
    """Media stream WebSocket server."""

    host: str = "0.0.0.0"
    port: int = 5000
    media_path: str = "/ws/media"
    max_concurrent_calls: int = 0  # 0 = unlimited
    active_call_ttl_s: float = 60.0


@dataclass(frozen=True)
class AudioConfig:
    """Per-call audio pipeline tuning."""

    frame_ms: int = AudioConstants.FRAME_MS
    silence_timeout_ms: int = AudioConstants.SILENCE_TIMEOUT_MS
    flush_poll_ms: int = AudioConstants.FLUSH_POLL_MS
    keepalive_interval_s: float = AudioConstants.KEEPALIVE_INTERVAL_S
    speech_threshold: Optional[int] = None
    max_utterance_ms: Optional[int] = None
    resample_quality: str = "linear"


@dataclass(frozen=True)
class AiConfig:
    """Speech AI vendor settings."""

    vendor: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-realtime-preview"
    openai_voice: str = "alloy"
    openai_url: str = "wss://api.openai.com/v1/realtime"
    connect_timeout_s: float = 10.0
    connect_attempts: int = 3
    connect_backoff_s: float = 0.5
    agent_prompt_file: Optional[str] = None


@dataclass(frozen=True)
class SystemConfig:
    """Logging."""

    log_level: str = "INFO"
    log_format: str = "console"
    log_dir: Optional[str] = None


@dataclass(frozen=True)
class Config:
    """Top-level configuration."""

    server: ServerConfig
    audio: AudioConfig
    ai: AiConfig
    system: SystemConfig

    @classmethod
    def from_env(cls) -> "Config":
        """Build configuration from the process environment.

        Raises:
            ValueError: If a variable has an invalid value
        """
        audio = AudioConfig(
            frame_ms=_env_int("FRAME_MS", AudioConstants.FRAME_MS),
            silence_timeout_ms=_env_int("SILENCE_TIMEOUT_MS", AudioConstants.SILENCE_TIMEOUT_MS),
            flush_poll_ms=_env_int("FLUSH_POLL_MS", AudioConstants.FLUSH_POLL_MS),
            keepalive_interval_s=_env_float("KEEPALIVE_INTERVAL_S", AudioConstants.KEEPALIVE_INTERVAL_S),
            speech_threshold=_env_opt_int("SPEECH_THRESHOLD"),
            max_utterance_ms=_env_opt_int("MAX_UTTERANCE_MS"),
            resample_quality=_env_str("RESAMPLE_QUALITY", "linear"),
        )
        if audio.flush_poll_ms <= 0 or audio.keepalive_interval_s <= 0:
            raise ValueError("FLUSH_POLL_MS and KEEPALIVE_INTERVAL_S must be positive")

        ai = AiConfig(
            vendor=_env_str("AI_VENDOR", "openai").lower(),
            openai_api_key=_env_str("OPENAI_API_KEY", ""),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4o-realtime-preview"),
            openai_voice=_env_str("OPENAI_VOICE", "alloy"),
            openai_url=_env_str("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"),
            connect_timeout_s=_env_float("AI_CONNECT_TIMEOUT_S", 10.0),
            connect_attempts=_env_int("AI_CONNECT_ATTEMPTS", 3),
            connect_backoff_s=_env_float("AI_CONNECT_BACKOFF_S", 0.5),
            agent_prompt_file=os.getenv("AGENT_PROMPT_FILE") or None,
        )
        if ai.vendor not in ("openai", "mock"):
            raise ValueError(f"AI_VENDOR must be 'openai' or 'mock', got {ai.vendor!r}")

        server = ServerConfig(
            host=_env_str("HOST", "0.0.0.0"),
            port=_env_int("PORT", 5000),
            media_path=_env_str("MEDIA_PATH", "/ws/media"),
            max_concurrent_calls=_env_int("MAX_CONCURRENT_CALLS", 0),
            active_call_ttl_s=_env_float("ACTIVE_CALL_TTL_S", 60.0),
        )
        # Live calls refresh their registry entry on every keep-alive tick
        if audio.keepalive_interval_s >= server.active_call_ttl_s:
            raise ValueError(
                f"KEEPALIVE_INTERVAL_S ({audio.keepalive_interval_s}) must be less than "
                f"ACTIVE_CALL_TTL_S ({server.active_call_ttl_s})"
            )

        return cls(
            server=server,
            audio=audio,
            ai=ai,
            system=SystemConfig(
                log_level=_env_str("LOG_LEVEL", "INFO"),
                log_format=_env_str("LOG_FORMAT", "console").lower(),
                log_dir=os.getenv("LOG_DIR") or None,
            ),
        )


load_dotenv()
config = Config.from_env()
