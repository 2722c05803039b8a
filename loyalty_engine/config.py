"""
Configuration management for the Loyalty Engine
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional
from loguru import logger
from pydantic import BaseModel, Field, ValidationError


ENV_PREFIX = "LOYALTY_ENGINE_"


class EngineConfig(BaseModel):
    """Configuration model for the Loyalty Engine"""

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    log_rotation: str = Field(default="10 MB", description="Log rotation size")
    log_retention: str = Field(default="30 days", description="Log retention period")

    # Points settings
    points_precision: int = Field(default=4, description="Decimal places kept when storing points")

    # Ledger settings
    ledger_max_retries: int = Field(default=10, description="Attempts per ledger mutation before giving up")
    ledger_retry_backoff_ms: int = Field(default=5, description="Base backoff between ledger retries in milliseconds")
    store_timeout: float = Field(default=5.0, description="Timeout for each data store call in seconds")

    # Rule settings
    reevaluate_tier_after_mutation: bool = Field(
        default=True, description="Re-evaluate the card tier in the same invocation as a points change"
    )
    validate_tier_thresholds: bool = Field(
        default=True, description="Reject tier sets whose thresholds decrease as level increases"
    )
    active_card_status: str = Field(default="active", description="Status value marking a usable loyalty card")


class ConfigManager:
    """Configuration manager for the Loyalty Engine"""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Path to configuration file
        """
        self.config_file = config_file or "loyalty_engine_config.json"
        self._config = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file, then apply environment overrides"""
        config_data: Dict[str, Any] = {}
        try:
            if Path(self.config_file).exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
            config_data.update(self.get_environment_config())
            self._config = EngineConfig(**config_data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load configuration: {e}")
            # Fallback to default configuration
            self._config = EngineConfig()

    def get_config(self) -> EngineConfig:
        """Get current configuration"""
        return self._config

    def update_config(self, **kwargs) -> None:
        """Update configuration with new values"""
        known = {k: v for k, v in kwargs.items() if k in EngineConfig.model_fields}
        self._config = self._config.model_copy(update=known)

    def save_config(self) -> None:
        """Save current configuration to file"""
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(self._config.model_dump(), f, indent=2)

    def reset_to_defaults(self) -> None:
        """Reset configuration to defaults"""
        self._config = EngineConfig()

    def validate_config(self) -> Dict[str, Any]:
        """Validate current configuration"""
        validation_results = {
            'valid': True,
            'warnings': [],
            'errors': []
        }

        valid_log_levels = ['TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        if self._config.log_level.upper() not in valid_log_levels:
            validation_results['errors'].append(f"Invalid log level: {self._config.log_level}")
            validation_results['valid'] = False

        if self._config.points_precision < 0:
            validation_results['errors'].append("points_precision must be non-negative")
            validation_results['valid'] = False

        if self._config.ledger_max_retries <= 0:
            validation_results['errors'].append("ledger_max_retries must be positive")
            validation_results['valid'] = False

        if self._config.ledger_retry_backoff_ms < 0:
            validation_results['errors'].append("ledger_retry_backoff_ms must be non-negative")
            validation_results['valid'] = False

        if self._config.store_timeout <= 0:
            validation_results['errors'].append("store_timeout must be positive")
            validation_results['valid'] = False

        if not self._config.reevaluate_tier_after_mutation:
            validation_results['warnings'].append(
                "Tier re-evaluation relies on separate loyalty card events"
            )

        return validation_results

    def get_environment_config(self) -> Dict[str, str]:
        """Get configuration from environment variables"""
        env_config = {}

        for field_name in EngineConfig.model_fields:
            env_var_name = f"{ENV_PREFIX}{field_name.upper()}"
            env_value = os.getenv(env_var_name)

            if env_value is not None:
                env_config[field_name] = env_value

        return env_config

    def create_sample_config(self, output_file: str = "loyalty_engine_config_sample.json") -> None:
        """Create a sample configuration file"""
        sample_config = EngineConfig()

        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(sample_config.model_dump(), f, indent=2)

        logger.info(f"Sample configuration created: {output_file}")


# Global configuration instance
config_manager = ConfigManager()


def get_config() -> EngineConfig:
    """Get the global configuration instance"""
    return config_manager.get_config()


def update_config(**kwargs) -> None:
    """Update the global configuration"""
    config_manager.update_config(**kwargs)
