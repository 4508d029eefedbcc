"""Configuration utilities for the product ranker."""

import json
from pathlib import Path
from typing import Any, Optional
from omegaconf import DictConfig, OmegaConf
from .settings import config_manager


VALID_EMBEDDING_PROVIDERS = ("hashing", "http")


def validate_config(cfg: Optional[DictConfig] = None) -> bool:
    """
    Validate the configuration for required fields and valid values.

    Args:
        cfg: Configuration to validate (defaults to the loaded configuration)

    Returns:
        True if configuration is valid, False otherwise
    """
    cfg = cfg if cfg is not None else config_manager.config
    try:
        assert cfg.embedding.provider in VALID_EMBEDDING_PROVIDERS, (
            f"Embedding provider must be one of {VALID_EMBEDDING_PROVIDERS}"
        )
        assert cfg.embedding.dimension > 0, "Embedding dimension must be positive"

        assert cfg.ranking.default_top_k > 0, "Default top-k must be positive"
        assert cfg.ranking.recency_half_life_days > 0, "Recency half-life must be positive"
        assert 0 < cfg.ranking.recency_floor < 1, "Recency floor must be between 0 and 1"
        assert cfg.ranking.stock_reference > 0, "Stock reference must be positive"
        assert 0 <= cfg.ranking.missing_price_score <= 1, "Missing price score must be within [0, 1]"
        assert cfg.ranking.weight_sum_tolerance >= 0, "Weight tolerance cannot be negative"

        assert cfg.search.max_top_k >= cfg.ranking.default_top_k, "max_top_k must cover default_top_k"
        assert cfg.refresh.max_concurrency > 0, "Refresh concurrency must be positive"
        assert cfg.refresh.text_used_max_chars > 0, "text_used_max_chars must be positive"
        assert cfg.evaluation.cutoff > 0, "Evaluation cutoff must be positive"

        return True
    except (AssertionError, AttributeError) as e:
        print(f"Configuration validation failed: {e}")
        return False


def get_environment() -> str:
    """Get the current environment name."""
    return config_manager.environment


def set_environment(environment: str) -> None:
    """
    Set the environment and reload configuration.

    Args:
        environment: Environment name (development, production, etc.)
    """
    config_manager.environment = environment
    config_manager.reload()


def get_config_value(key_path: str, default: Any = None) -> Any:
    """Get a configuration value using dot notation."""
    return config_manager.get(key_path, default)


def print_config_summary() -> None:
    """Print a summary of the current configuration."""
    cfg = config_manager.config
    print("=== Product Ranker Configuration Summary ===")
    print(f"Environment: {get_environment()}")
    print(f"Embedder: {cfg.embedding.provider} ({cfg.embedding.model_name}, dim={cfg.embedding.dimension})")
    print(f"Default top-k: {cfg.ranking.default_top_k}")
    print(f"Recency half-life: {cfg.ranking.recency_half_life_days} days")
    print(f"Stock reference quantity: {cfg.ranking.stock_reference}")
    print(f"Refresh concurrency: {cfg.refresh.max_concurrency}")
    print(f"Log Level: {cfg.logging.level}")
    print("=" * 50)


def export_config_to_file(output_path: str, format: str = "yaml") -> None:
    """
    Export current configuration to a file.

    Args:
        output_path: Path to output file
        format: Output format ('yaml' or 'json')
    """
    output_path = Path(output_path)
    cfg = config_manager.config

    if format.lower() == "yaml":
        OmegaConf.save(cfg, output_path)
    elif format.lower() == "json":
        with open(output_path, "w") as f:
            json.dump(OmegaConf.to_container(cfg, resolve=True), f, indent=2)
    else:
        raise ValueError(f"Unsupported format: {format}")

    print(f"Configuration exported to: {output_path}")
