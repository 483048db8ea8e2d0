"""Agent prompt loader from YAML files.

Holds the default instructions, greeting and voice used to configure each
call's AI session. Call routing may override the greeting per call.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import structlog
import yaml

from voice_bridge.ai.realtime_base import SessionConfig


logger = structlog.get_logger(__name__)


@dataclass
class AgentConfig:
    """Agent prompts loaded from a YAML file.

    Fields:
        instructions: System prompt for the speech AI (required in YAML)
        greeting: Optional welcome message spoken when the AI session is ready
        voice: Optional voice override
        metadata: Optional metadata for documentation purposes
    """

    instructions: str = "You are a helpful, friendly phone receptionist. Keep responses short and natural."
    greeting: Optional[str] = None
    voice: Optional[str] = None
    metadata: Optional[Dict] = None

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "AgentConfig":
        """Load agent configuration from YAML file.

        Args:
            file_path: Path to YAML configuration file

        Returns:
            AgentConfig instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If YAML file is invalid
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Agent config file not found: {file_path}")

        logger.info("Loading agent config from YAML", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML file: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("YAML file must contain a dictionary")

        instructions = data.get("instructions")
        greeting = data.get("greeting")
        voice = data.get("voice")

        # Validate instructions (required field)
        if not instructions:
            raise ValueError("'instructions' field is required in YAML config")
        if not isinstance(instructions, str):
            raise ValueError("'instructions' field must be a string")
        if greeting is not None and not isinstance(greeting, str):
            raise ValueError("'greeting' field must be a string")

        config = cls(
            instructions=instructions.strip(),
            greeting=greeting.strip() if greeting else None,
            voice=voice,
            metadata=data.get("metadata")
        )

        logger.info(
            "Agent config loaded successfully",
            instructions_length=len(config.instructions),
            has_greeting=config.greeting is not None,
            voice=config.voice
        )
        return config

    @classmethod
    def from_yaml_or_default(cls, file_path: Optional[str | Path]) -> "AgentConfig":
        """Load agent config from YAML file, or use defaults if none is set.

        If file_path is specified, loading must succeed; there is no fallback
        to defaults for a broken file.

        Args:
            file_path: Optional path to YAML configuration file

        Returns:
            AgentConfig instance
        """
        if not file_path:
            logger.info("No agent config file specified, using default prompts")
            return cls()

        return cls.from_yaml(file_path)

    def session_config(
        self,
        caller_id: Optional[str] = None,
        greeting: Optional[str] = None,
        default_voice: Optional[str] = None
    ) -> SessionConfig:
        """Build the per-call AI session configuration.

        Args:
            caller_id: Caller identity from call routing
            greeting: Per-call greeting, overrides the YAML greeting
            default_voice: Voice used when the YAML sets none

        Returns:
            Session configuration
        """
        return SessionConfig(
            instructions=self.instructions,
            greeting=greeting or self.greeting,
            caller_id=caller_id,
            voice=self.voice or default_voice
        )

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging/debugging."""
        return {
            "instructions": self.instructions[:100] + "..." if len(self.instructions) > 100 else self.instructions,
            "greeting": self.greeting,
            "voice": self.voice,
            "metadata": self.metadata,
            "instructions_length": len(self.instructions),
        }
