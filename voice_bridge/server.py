"""Media stream WebSocket server.

Accepts one telephony media stream connection per call on the configured
path and runs a CallBridgeSession for it. Call routing passes per-call
context in the connection query string:

- ``callSid``: call identifier (generated when absent)
- ``from``: caller identity
- ``initialPrompt``: greeting the AI speaks first
"""

import asyncio
import signal
from typing import Callable, Optional
from urllib.parse import parse_qs, urlsplit

import structlog
from websockets.asyncio.server import ServerConnection, serve

from voice_bridge.ai.mock_realtime import MockRealtimeSession
from voice_bridge.ai.openai_realtime import OpenAIRealtimeClient
from voice_bridge.ai.realtime_base import AiRealtimeSession, SessionConfig
from voice_bridge.bridge.call_session import CallBridgeSession
from voice_bridge.bridge.registry import ActiveCallRegistry
from voice_bridge.config import Config
from voice_bridge.core.agent_config import AgentConfig


logger = structlog.get_logger(__name__)

# WebSocket close codes
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TRY_AGAIN_LATER = 1013

AiSessionFactory = Callable[[SessionConfig], AiRealtimeSession]


def create_ai_session(cfg: Config, session_config: SessionConfig) -> AiRealtimeSession:
    """Create an AI session for one call based on configuration.

    Args:
        cfg: Application configuration
        session_config: Per-call session configuration

    Returns:
        Unconnected AI session

    Raises:
        ValueError: If vendor is not supported or credentials are missing
    """
    vendor = cfg.ai.vendor

    if vendor == "openai":
        if not cfg.ai.openai_api_key:
            raise ValueError("OpenAI API key not configured")
        return OpenAIRealtimeClient(
            api_key=cfg.ai.openai_api_key,
            model=cfg.ai.openai_model,
            session_config=session_config,
            url=cfg.ai.openai_url,
            connect_timeout=cfg.ai.connect_timeout_s,
            max_attempts=cfg.ai.connect_attempts,
            backoff_s=cfg.ai.connect_backoff_s
        )

    if vendor == "mock":
        return MockRealtimeSession(session_config=session_config, echo=True)

    raise ValueError(f"Unsupported AI vendor: {vendor}")


class MediaStreamServer:
    """Runs one call bridge per accepted media stream connection."""

    def __init__(
        self,
        cfg: Config,
        agent: Optional[AgentConfig] = None,
        ai_factory: Optional[AiSessionFactory] = None,
        registry: Optional[ActiveCallRegistry] = None
    ) -> None:
        """Initialize server.

        Args:
            cfg: Application configuration
            agent: Default prompts for AI sessions
            ai_factory: Builds an AI session from a session config
                (defaults to the configured vendor)
            registry: Active call registry
        """
        self._cfg = cfg
        self._agent = agent or AgentConfig()
        self._ai_factory = ai_factory or (lambda session_config: create_ai_session(cfg, session_config))
        self.registry = registry or ActiveCallRegistry(ttl_seconds=cfg.server.active_call_ttl_s)
        self._sessions: set[CallBridgeSession] = set()

    @property
    def active_sessions(self) -> int:
        """Number of call bridges currently running."""
        return len(self._sessions)

    async def handle_connection(self, ws: ServerConnection) -> None:
        """Bridge one telephony media stream connection.

        Args:
            ws: Accepted WebSocket connection
        """
        url = urlsplit(ws.request.path if ws.request else "/")

        if url.path != self._cfg.server.media_path:
            logger.warning("Rejecting connection on unknown path", path=url.path)
            await ws.close(CLOSE_POLICY_VIOLATION, "Unknown path")
            return

        limit = self._cfg.server.max_concurrent_calls
        if limit and len(self._sessions) >= limit:
            logger.warning("Rejecting call: server at capacity", active=len(self._sessions), limit=limit)
            await ws.close(CLOSE_TRY_AGAIN_LATER, "Server at capacity")
            return

        params = {key: values[0] for key, values in parse_qs(url.query).items() if values}
        caller = params.get("from")
        session_config = self._agent.session_config(
            caller_id=caller,
            greeting=params.get("initialPrompt"),
            default_voice=self._cfg.ai.openai_voice
        )

        try:
            ai_session = self._ai_factory(session_config)
        except ValueError as e:
            logger.error("Cannot create AI session", error=str(e))
            await ws.close(CLOSE_TRY_AGAIN_LATER, "AI unavailable")
            return

        session = CallBridgeSession(
            transport=ws,
            ai_session=ai_session,
            call_id=params.get("callSid"),
            audio=self._cfg.audio,
            registry=self.registry,
            caller=caller
        )
        # Keyed by session, callSid is caller-supplied and may repeat
        self._sessions.add(session)

        try:
            await session.run()
        except asyncio.CancelledError:
            logger.info("Call bridge cancelled", call_id=session.call_id)
            raise
        except Exception as e:
            logger.error("Call bridge error", call_id=session.call_id, error=str(e), exc_info=True)
        finally:
            self._sessions.discard(session)


async def run_server(cfg: Config, agent: Optional[AgentConfig] = None) -> None:
    """Serve media streams until SIGINT/SIGTERM.

    Args:
        cfg: Application configuration
        agent: Default prompts for AI sessions
    """
    server = MediaStreamServer(cfg, agent)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, OSError):
            logger.debug("Signal handlers unavailable", signal=sig)

    # Keep-alive pings are sent by each call bridge
    async with serve(
        server.handle_connection,
        cfg.server.host,
        cfg.server.port,
        ping_interval=None,
        max_size=1024 * 1024
    ):
        logger.info(
            "Media stream server ready",
            host=cfg.server.host,
            port=cfg.server.port,
            path=cfg.server.media_path,
            ai_vendor=cfg.ai.vendor
        )
        await stop_event.wait()
        logger.info("Shutting down gracefully...", active_calls=server.active_sessions)
