"""Pydantic configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from binfeat.config.defaults import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_EXTENSIONS,
    DEFAULT_GHIDRA_HOME,
    DEFAULT_INPUT_DIR,
    DEFAULT_NGRAM_SIZES,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PRECISION,
    DEFAULT_TIMEOUT_PER_BINARY,
)


class EngineConfig(BaseModel):
    backend: str = "ghidra"
    ghidra_home: str = DEFAULT_GHIDRA_HOME
    timeout_per_binary: float = Field(DEFAULT_TIMEOUT_PER_BINARY, gt=0)
    # Directory of pre-exported raw JSON, used by the "precomputed" backend.
    export_dir: str | None = None
    max_memory: str | None = None
    kill_grace_seconds: float = Field(5.0, ge=0)


class PipelineConfig(BaseModel):
    input_dir: str = DEFAULT_INPUT_DIR
    output_dir: str = DEFAULT_OUTPUT_DIR
    batch_size: int = Field(DEFAULT_BATCH_SIZE, ge=1)
    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    skip_existing: bool = False

    @field_validator("extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]


class FeatureConfig(BaseModel):
    ngram_sizes: list[int] = Field(default_factory=lambda: list(DEFAULT_NGRAM_SIZES))
    precision: int = Field(DEFAULT_PRECISION, ge=0, le=12)

    @field_validator("ngram_sizes")
    @classmethod
    def _positive_sizes(cls, value: list[int]) -> list[int]:
        if any(n < 1 for n in value):
            raise ValueError("n-gram sizes must be >= 1")
        return sorted(set(value))


class RulesConfig(BaseModel):
    signatures_file: str | None = None
    include_builtin_signatures: bool = True
    label_rules_file: str | None = None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class BinFeatConfig(BaseModel):
    engine: EngineConfig = Field(default_factory=EngineConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    features: FeatureConfig = Field(default_factory=FeatureConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
