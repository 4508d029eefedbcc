"""Configuration management for the product ranker using OmegaConf."""

import os
from pathlib import Path
from typing import Any, Dict, Optional
from omegaconf import DictConfig, OmegaConf


DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


class ConfigManager:
    """Configuration manager using OmegaConf for YAML-based configuration."""

    def __init__(self, config_dir: Optional[str] = None, environment: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing configuration files
            environment: Environment name (development, production, etc.)
        """
        self.config_dir = Path(config_dir or os.getenv("RANKER_CONFIG_DIR") or DEFAULT_CONFIG_DIR)
        self.environment = environment or os.getenv("ENVIRONMENT", "default")
        self._config: Optional[DictConfig] = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML files."""
        default_config_path = self.config_dir / "default.yaml"
        if not default_config_path.exists():
            raise FileNotFoundError(f"Default configuration file not found: {default_config_path}")

        config = OmegaConf.load(default_config_path)

        # Environment-specific overrides
        env_config_path = self.config_dir / f"{self.environment}.yaml"
        if env_config_path.exists():
            config = OmegaConf.merge(config, OmegaConf.load(env_config_path))

        # User-specific overrides
        user_config_path = self.config_dir / "user.yaml"
        if user_config_path.exists():
            config = OmegaConf.merge(config, OmegaConf.load(user_config_path))

        config = self._apply_env_overrides(config)

        self._config = config

    def _apply_env_overrides(self, config: DictConfig) -> DictConfig:
        """Apply environment variable overrides to configuration."""
        env_mappings = {
            "RANKER_EMBEDDING_PROVIDER": "embedding.provider",
            "RANKER_EMBEDDING_DIMENSION": "embedding.dimension",
            "RANKER_EMBEDDING_ENDPOINT": "embedding.http.endpoint",
            "RANKER_EMBEDDING_API_KEY": "embedding.http.api_key",
            "RANKER_DEFAULT_TOP_K": "ranking.default_top_k",
            "RANKER_RECENCY_HALF_LIFE_DAYS": "ranking.recency_half_life_days",
            "RANKER_STOCK_REFERENCE": "ranking.stock_reference",
            "RANKER_REFRESH_CONCURRENCY": "refresh.max_concurrency",
            "RANKER_LOG_LEVEL": "logging.level",
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                # Convert string values to appropriate types
                if env_value.lower() in ("true", "false"):
                    env_value = env_value.lower() == "true"
                elif env_value.isdigit():
                    env_value = int(env_value)
                elif env_value.replace(".", "", 1).isdigit():
                    env_value = float(env_value)

                OmegaConf.update(config, config_path, env_value, force_add=True)

        return config

    @property
    def config(self) -> DictConfig:
        """Get the current configuration."""
        if self._config is None:
            self._load_config()
        return self._config

    def reload(self) -> None:
        """Reload configuration from files."""
        self._load_config()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Configuration key in dot notation (e.g., 'ranking.default_top_k')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return OmegaConf.select(self.config, key, default=default)


# Global configuration manager instance
config_manager = ConfigManager()
config = config_manager.config


def _section(name: str) -> Dict[str, Any]:
    section = OmegaConf.select(config_manager.config, name)
    if section is None:
        return {}
    return OmegaConf.to_container(section, resolve=True)


def get_embedding_config() -> Dict[str, Any]:
    """Get embedder configuration parameters."""
    return _section("embedding")


def get_ranking_config() -> Dict[str, Any]:
    """Get scoring engine configuration parameters."""
    return _section("ranking")


def get_search_config() -> Dict[str, Any]:
    """Get search orchestration configuration parameters."""
    return _section("search")


def get_refresh_config() -> Dict[str, Any]:
    """Get embedding refresh configuration parameters."""
    return _section("refresh")


def get_evaluation_config() -> Dict[str, Any]:
    """Get evaluation configuration parameters."""
    return _section("evaluation")


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration parameters."""
    return _section("logging")


def get_monitoring_config() -> Dict[str, Any]:
    """Get monitoring configuration parameters."""
    return _section("monitoring")
