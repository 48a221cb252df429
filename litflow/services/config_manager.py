import os
import yaml
from pathlib import Path
from string import Template
from typing import Optional
from dotenv import load_dotenv
import structlog
from pydantic import ValidationError

from litflow.models.config import WorkflowSettings
from litflow.utils.exceptions import ConfigurationError

logger = structlog.get_logger()


class ConfigValidationError(ConfigurationError):
    """Configuration validation failed"""

    pass


class ConfigManager:
    """Loads workflow settings from YAML with ${VAR} environment substitution"""

    def __init__(
        self,
        config_path: str = "config/workflow.yaml",
        load_env: bool = True,
    ):
        self.config_path = Path(config_path)
        self.env_loaded = not load_env
        self._config: Optional[WorkflowSettings] = None

    def load_config(self) -> WorkflowSettings:
        """Load and validate configuration"""
        if self._config:
            return self._config

        # 1. Load environment
        if not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        # 2. Check file existence
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        # 3. Read YAML
        try:
            with open(self.config_path) as f:
                raw_content = f.read()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}")

        # 4. Substitute env vars
        try:
            template = Template(raw_content)
            substituted_content = template.safe_substitute(os.environ)
            config_data = yaml.safe_load(substituted_content)
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse YAML or substitute variables: {e}"
            )

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ConfigValidationError(
                "Invalid configuration: top level must be a mapping",
                context={"type": type(config_data).__name__},
            )

        # 5. Validate with Pydantic
        try:
            self._config = WorkflowSettings(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}")

        logger.info(
            "config_loaded",
            path=str(self.config_path),
            hard_limit=self._config.source_limits.hard_limit,
            fulltext_timeout_seconds=self._config.fulltext.timeout_seconds,
        )
        return self._config
