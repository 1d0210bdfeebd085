"""
Configuration loader for the dusty notification daemon.

Loads and parses config.toml (TOML format) into a DaemonConfig:
- [policy] display defaults and limits
- [dnd_schedule] daily do-not-disturb window
- [history] and [renderer] settings
- [[rules]] ordered policy rules
"""

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError

from ..errors import ErrorCode, PolicyError
from ..models import DaemonConfig

logger = logging.getLogger(__name__)


def _format_errors(error: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"location": ".".join(str(part) for part in item["loc"]), "message": item["msg"]}
        for item in error.errors()
    ]


class ConfigLoader:
    """Loads daemon configuration from a TOML file."""

    def __init__(self, config_path: Path):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to config.toml
        """
        self.config_path = config_path

    @property
    def config_dir(self) -> Path:
        return self.config_path.parent

    def parse(self, data: Dict[str, Any]) -> DaemonConfig:
        """
        Validate already-decoded configuration data.

        Raises:
            PolicyError: If a table or rule is malformed
        """
        try:
            return DaemonConfig.model_validate(data)
        except PydanticValidationError as e:
            errors = _format_errors(e)
            first = errors[0]
            raise PolicyError(
                str(self.config_path),
                f"{len(errors)} invalid field(s), first at {first['location']}: {first['message']}",
                errors=errors,
                code=ErrorCode.INVALID_RULE if first["location"].startswith("rules") else ErrorCode.POLICY_LOAD_FAILED,
            ) from e

    def load(self) -> DaemonConfig:
        """
        Load configuration from config.toml.

        Returns:
            Parsed configuration (defaults when the file doesn't exist)

        Raises:
            PolicyError: If the file can't be read, isn't valid TOML, or fails validation
        """
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults")
            return DaemonConfig()

        try:
            with open(self.config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise PolicyError(
                str(self.config_path),
                f"TOML syntax error: {e}",
                code=ErrorCode.CONFIG_SYNTAX_ERROR,
            ) from e
        except OSError as e:
            raise PolicyError(str(self.config_path), f"cannot read file: {e}") from e

        config = self.parse(data)
        logger.info(f"Loaded config from {self.config_path}: {len(config.rules)} rules")
        return config

    def load_or_default(self) -> DaemonConfig:
        """Load configuration, falling back to defaults on PolicyError."""
        try:
            return self.load()
        except PolicyError as e:
            logger.error(f"{e.message}; falling back to default policy")
            for error in e.context.get("errors", [])[:3]:
                logger.error(f"  {error['location']}: {error['message']}")
            return DaemonConfig()
