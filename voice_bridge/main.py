"""Main application entry point for the telephony media bridge."""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from voice_bridge import __version__
from voice_bridge.config import Config, config
from voice_bridge.core.agent_config import AgentConfig
from voice_bridge.server import run_server


def setup_logging(cfg: Config = config) -> Optional[Path]:
    """Configure structured logging.

    Logs go to stdout, and to a timestamped file when LOG_DIR is set.

    Args:
        cfg: Application configuration

    Returns:
        Log file path, if file logging is enabled
    """
    log_level = getattr(logging, cfg.system.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file: Optional[Path] = None
    if cfg.system.log_dir:
        log_dir = Path(cfg.system.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"voice-bridge_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    # Configure root logger
    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True
    )

    # Configure structlog
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if cfg.system.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_file is not None:
        structlog.get_logger(__name__).info(f"Logging to file: {log_file}")
    return log_file


def _load_agent_config(cfg: Config) -> AgentConfig:
    """Load agent prompts, resolving a relative path against the working directory."""
    logger = structlog.get_logger(__name__)

    prompt_file = cfg.ai.agent_prompt_file
    if prompt_file:
        logger.info(
            "Loading agent prompts from YAML",
            file_path=prompt_file,
            resolved_path=str(Path(prompt_file).resolve())
        )
    return AgentConfig.from_yaml_or_default(prompt_file)


async def main(cfg: Config = config) -> None:
    """Main application entry point - serves media streams until stopped."""
    logger = structlog.get_logger(__name__)

    logger.info(
        "Voice bridge starting",
        version=__version__,
        ai_vendor=cfg.ai.vendor
    )

    agent = _load_agent_config(cfg)
    logger.info("Agent prompts", **agent.to_dict())

    await run_server(cfg, agent)


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Voice bridge: real-time audio relay between telephony media streams and speech AI"
    )
    parser.add_argument("--host", help=f"Bind address (default: {config.server.host})")
    parser.add_argument("--port", type=int, help=f"Bind port (default: {config.server.port})")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    args = parser.parse_args()

    cfg = config
    if args.host or args.port:
        cfg = replace(
            config,
            server=replace(
                config.server,
                host=args.host or config.server.host,
                port=args.port or config.server.port
            )
        )

    # Setup logging BEFORE anything else
    setup_logging(cfg)
    logger = structlog.get_logger(__name__)

    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
