"""Runtime configuration for the TeamRAG services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="teamrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Generation backend
    backend: Literal["ollama", "transformers", "template"] = "ollama"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"
    guard_model: str = "llama-guard3:1b"
    local_model: str = "Qwen/Qwen2.5-1.5B-Instruct"
    local_device: str | None = None
    request_timeout_seconds: float = 30.0

    # Embeddings
    embeddings: Literal["hash", "huggingface", "ollama"] = "ollama"
    embedding_model: str = "nomic-embed-text"
    embedding_dim: int = 768

    # Vector database
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    collection: str = "teamrag_docs"

    # Chunking and retrieval
    chunk_tokens: int = Field(default=1000, ge=100, le=4000)
    chunk_overlap: int = Field(default=200, ge=0)
    top_k: int = Field(default=6, ge=1, le=50)

    # Generation parameters
    temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    max_tokens: int = Field(default=1024, ge=1)
    stream_generation: bool = False
    query_timeout_seconds: float | None = None

    # System
    system_prompt_path: Path | None = None
    safety: bool = True
    log_level: Literal["debug", "info", "warning", "error"] = "info"

    # API
    api_key: str | None = None  # if set, required in X-API-Key header
    max_upload_size_mb: int = 25
    upload_dir: Path = Path("./.uploads")

    @field_validator("safety", mode="before")
    @classmethod
    def _parse_safety_switch(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in {"on", "off"}:
            return value.strip().lower() == "on"
        return value

    @field_validator("system_prompt_path")
    @classmethod
    def _system_prompt_exists(cls, value: Path | None) -> Path | None:
        if value is not None and not value.is_file():
            raise ValueError(f"system prompt file not found: {value}")
        return value

    @model_validator(mode="after")
    def _overlap_below_chunk_size(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_tokens:
            raise ValueError(
                f"chunk_overlap must be smaller than chunk_tokens ({self.chunk_overlap} >= {self.chunk_tokens})"
            )
        return self

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @classmethod
    def from_yaml(cls, path: Path, **overrides: Any) -> "Settings":
        """Load settings from a YAML file; explicit overrides win over file values."""

        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"configuration file {path} must contain a mapping")
        data.update(overrides)
        return cls(**data)


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
