"""
Configuration management for folio stores.

The configuration is stored as a TOML file in the store directory.
It names the embedding and judge providers, their parameters, and the
batching and deduplication settings.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore

from .types import DEFAULT_EMBEDDING_DIMENSION, BatchRunConfig


CONFIG_FILENAME = "folio.toml"
CONFIG_VERSION = 1

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_EMBEDDING_MODEL = "mxbai-embed-large"
DEFAULT_JUDGE_MODEL = "llama3.2"

# Similarity floor for duplicate candidates
DEFAULT_DEDUP_THRESHOLD = 0.75
# Broader floor when gathering related concepts as LLM context
DEFAULT_CONTEXT_THRESHOLD = 0.5
DEFAULT_CONTEXT_LIMIT = 5


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class DedupConfig:
    """Similarity thresholds for concept curation."""
    threshold: float = DEFAULT_DEDUP_THRESHOLD
    context_threshold: float = DEFAULT_CONTEXT_THRESHOLD
    context_limit: int = DEFAULT_CONTEXT_LIMIT


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig(
        "ollama", {"model": DEFAULT_EMBEDDING_MODEL, "dimension": DEFAULT_EMBEDDING_DIMENSION},
    ))
    judge: ProviderConfig = field(default_factory=lambda: ProviderConfig(
        "ollama", {"model": DEFAULT_JUDGE_MODEL},
    ))
    batch: BatchRunConfig = field(default_factory=BatchRunConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def embedding_dimension(self) -> int:
        return int(self.embedding.params.get("dimension", DEFAULT_EMBEDDING_DIMENSION))

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory: FOLIO_STORE_PATH or ~/.folio."""
    env = os.environ.get("FOLIO_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".folio"


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

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    def parse_provider(section: dict, default_name: str) -> ProviderConfig:
        return ProviderConfig(
            name=section.get("name", default_name),
            params={k: v for k, v in section.items() if k != "name"},
        )

    # [ollama] settings are shared by every Ollama-backed provider
    ollama = data.get("ollama", {})
    embedding = parse_provider(data.get("embedding", {}), "ollama")
    judge = parse_provider(data.get("judge", {}), "ollama")
    for provider in (embedding, judge):
        if provider.name == "ollama":
            # OLLAMA_HOST takes precedence over [ollama] host
            if "host" in ollama and not os.environ.get("OLLAMA_HOST"):
                provider.params.setdefault("base_url", ollama["host"])
    if embedding.name == "ollama" and "auto_install" in ollama:
        embedding.params.setdefault("auto_install", bool(ollama["auto_install"]))
    embedding.params.setdefault("model", DEFAULT_EMBEDDING_MODEL)
    embedding.params.setdefault("dimension", DEFAULT_EMBEDDING_DIMENSION)

    batch_section = data.get("batch", {})
    defaults = BatchRunConfig()
    batch = BatchRunConfig(
        batch_size=int(batch_section.get("batch_size", defaults.batch_size)),
        concurrency=int(batch_section.get("concurrency", defaults.concurrency)),
        batch_delay=float(batch_section.get("batch_delay_ms", defaults.batch_delay * 1000)) / 1000,
        checkpoint_enabled=bool(batch_section.get("checkpoint", defaults.checkpoint_enabled)),
        adaptive_sizing=bool(batch_section.get("adaptive", defaults.adaptive_sizing)),
    )

    dedup_section = data.get("dedup", {})
    dedup = DedupConfig(
        threshold=float(dedup_section.get("threshold", DEFAULT_DEDUP_THRESHOLD)),
        context_threshold=float(dedup_section.get("context_threshold", DEFAULT_CONTEXT_THRESHOLD)),
        context_limit=int(dedup_section.get("context_limit", DEFAULT_CONTEXT_LIMIT)),
    )
    for name, value in (("threshold", dedup.threshold),
                        ("context_threshold", dedup.context_threshold)):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"[dedup] {name} must be between 0 and 1, got {value}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=embedding,
        judge=judge,
        batch=batch,
        dedup=dedup,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    # Ollama providers take base_url and auto_install from the shared [ollama] section
    shared = {"base_url", "auto_install"}

    def provider_to_dict(p: ProviderConfig) -> dict:
        skip = shared if p.name == "ollama" else set()
        d = {"name": p.name}
        d.update({k: v for k, v in p.params.items() if v is not None and k not in skip})
        return d

    ollama = {
        "host": config.embedding.params.get("base_url") or DEFAULT_OLLAMA_HOST,
        "auto_install": bool(config.embedding.params.get("auto_install", False)),
    }

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "ollama": ollama,
        "embedding": provider_to_dict(config.embedding),
        "judge": provider_to_dict(config.judge),
        "batch": {
            "batch_size": config.batch.batch_size,
            "concurrency": config.batch.concurrency,
            "batch_delay_ms": int(round(config.batch.batch_delay * 1000)),
            "checkpoint": config.batch.checkpoint_enabled,
            "adaptive": config.batch.adaptive_sizing,
        },
        "dedup": {
            "threshold": config.dedup.threshold,
            "context_threshold": config.dedup.context_threshold,
            "context_limit": config.dedup.context_limit,
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
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
