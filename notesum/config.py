"""
Configuration management for notesum stores.

The configuration is stored as a TOML file in the store directory.
It specifies which summarization provider to use and the pipeline's
delivery parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w

from .channel import DEFAULT_MAX_DELIVERIES, DEFAULT_VISIBILITY_TIMEOUT
from .processors import DEFAULT_MAX_INPUT_CHARS
from .worker import DEFAULT_BATCH_SIZE


CONFIG_FILENAME = "notesum.toml"
CONFIG_VERSION = 1


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineConfig:
    """Delivery and processing parameters."""
    max_deliveries: int = DEFAULT_MAX_DELIVERIES
    visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT
    max_input_chars: int = DEFAULT_MAX_INPUT_CHARS
    batch_size: int = DEFAULT_BATCH_SIZE

    def validate(self) -> None:
        if self.max_deliveries < 1:
            raise ValueError("pipeline.max_deliveries must be at least 1")
        if self.visibility_timeout <= 0:
            raise ValueError("pipeline.visibility_timeout must be positive")
        if self.max_input_chars < 1:
            raise ValueError("pipeline.max_input_chars must be positive")
        if self.batch_size < 1:
            raise ValueError("pipeline.batch_size must be at least 1")


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = "local"

    summarization: ProviderConfig = field(default_factory=lambda: ProviderConfig("passthrough"))
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def detect_default_summarization() -> ProviderConfig:
    """
    Detect the best default summarization provider for the environment.

    Priority:
    1. Anthropic (if ANTHROPIC_API_KEY is set)
    2. OpenAI (if NOTESUM_OPENAI_API_KEY or OPENAI_API_KEY is set)
    3. Fallback: passthrough (no LLM)
    """
    if os.environ.get("ANTHROPIC_API_KEY"):
        return ProviderConfig("anthropic")
    if os.environ.get("NOTESUM_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY"):
        return ProviderConfig("openai")
    return ProviderConfig("passthrough")


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    return StoreConfig(
        path=store_path,
        summarization=detect_default_summarization(),
    )


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    section = data.get("summarization", {"name": "passthrough"})
    summarization = ProviderConfig(
        name=section.get("name", "passthrough"),
        params={k: v for k, v in section.items() if k != "name"},
    )

    defaults = PipelineConfig()
    p = data.get("pipeline", {})
    unknown = set(p) - set(defaults.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown [pipeline] settings: {', '.join(sorted(unknown))}")
    pipeline = PipelineConfig(
        max_deliveries=int(p.get("max_deliveries", defaults.max_deliveries)),
        visibility_timeout=float(p.get("visibility_timeout", defaults.visibility_timeout)),
        max_input_chars=int(p.get("max_input_chars", defaults.max_input_chars)),
        batch_size=int(p.get("batch_size", defaults.batch_size)),
    )
    pipeline.validate()

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", "local"),
        summarization=summarization,
        pipeline=pipeline,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    summarization = {"name": config.summarization.name}
    summarization.update(config.summarization.params)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "summarization": summarization,
        "pipeline": {
            "max_deliveries": config.pipeline.max_deliveries,
            "visibility_timeout": config.pipeline.visibility_timeout,
            "max_input_chars": config.pipeline.max_input_chars,
            "batch_size": config.pipeline.batch_size,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
