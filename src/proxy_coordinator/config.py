"""
Coordinator configuration.

Values are resolved in three layers, last wins:
    1. dataclass defaults
    2. config/coordinator.yaml (section ``coordinator:``), if present
    3. environment variables (a local .env file is loaded first)
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Relative to the working directory, like the other config/ files
DEFAULT_CONFIG_PATH = Path("config") / "coordinator.yaml"

# field name -> environment variable
ENV_VARS = {
    "host": "HOST",
    "port": "PORT",
    "api_key": "API_KEY",
    "token_secret": "JWT_SECRET",
    "token_ttl_hours": "TOKEN_TTL_HOURS",
    "require_token": "REQUIRE_TOKEN",
    "expose_registered": "EXPOSE_REGISTERED",
    "close_on_malformed_first_message": "CLOSE_ON_MALFORMED_FIRST_MESSAGE",
    "log_level": "LOG_LEVEL",
    "admin_username": "ADMIN_USERNAME",
    "admin_password": "ADMIN_PASSWORD",
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class CoordinatorConfig:
    """Runtime settings for the proxy coordinator."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Shared registration secret; empty means registration is unguarded
    api_key: str = ""

    # Token subsystem
    token_secret: str = "secret"
    token_ttl_hours: int = 24
    require_token: bool = False

    # Query endpoints
    expose_registered: bool = False

    # Session policy
    close_on_malformed_first_message: bool = False

    # Logging
    log_level: str = "INFO"

    # Seed user for POST /login
    admin_username: Optional[str] = None
    admin_password: Optional[str] = None

    @property
    def bind_address(self) -> str:
        """Address the server listens on."""
        return f"{self.host}:{self.port}"

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        """Convert raw strings (env, YAML) to the declared field types."""
        coerced = {}
        types = {f.name: f.type for f in fields(cls)}
        for name, value in values.items():
            if name not in types:
                logger.warning(f"Ignoring unknown config key: {name}")
                continue
            field_type = types[name]
            if value is None:
                # null in YAML means "use the default"
                continue
            if field_type in (bool, "bool"):
                coerced[name] = _to_bool(value)
            elif field_type in (int, "int"):
                coerced[name] = int(value)
            else:
                coerced[name] = str(value)
        return coerced

    @classmethod
    def from_env(cls) -> "CoordinatorConfig":
        """Load configuration from environment variables only."""
        load_dotenv()
        values = {
            name: os.environ[env_var]
            for name, env_var in ENV_VARS.items()
            if env_var in os.environ
        }
        return cls(**cls._coerce(values))

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "CoordinatorConfig":
        """
        Load configuration from YAML file and environment.

        Args:
            config_path: Path to coordinator.yaml. If None, uses
                         COORDINATOR_CONFIG or the default path.

        Returns:
            Resolved CoordinatorConfig.
        """
        load_dotenv()

        if config_path is None:
            config_path = os.getenv("COORDINATOR_CONFIG", str(DEFAULT_CONFIG_PATH))

        values: Dict[str, Any] = {}
        if config_path and Path(config_path).exists():
            try:
                with open(config_path) as f:
                    file_config = yaml.safe_load(f)
                if file_config and "coordinator" in file_config:
                    values.update(file_config["coordinator"] or {})
                    logger.info(f"Loaded config from {config_path}")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")

        for name, env_var in ENV_VARS.items():
            if env_var in os.environ:
                values[name] = os.environ[env_var]

        return cls(**cls._coerce(values))
