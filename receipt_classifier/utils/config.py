"""Configuration management for the receipt classifier.

Loads and validates YAML configuration with sensible defaults for the
model artifact, pipeline timing, and field aggregation settings.
"""

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ModelConfig(BaseModel):
    """Location of the tokenizer and classifier artifacts.

    ``backend`` selects how the classifier runs: ``torch`` loads a
    transformers checkpoint from ``model_dir``, ``onnx`` runs ``onnx_file``
    with ONNX Runtime.
    """

    model_config = ConfigDict(protected_namespaces=())

    model_dir: str = "models/bert-base-uncased"
    vocab_file: str = "vocab.txt"
    tokenizer_config_file: str = "tokenizer.json"
    model_config_file: str = "config.json"
    backend: Literal["torch", "onnx"] = "torch"
    onnx_file: str = "model.onnx"
    onnx_providers: list[str] | None = None
    device: str | None = None

    @property
    def vocab_path(self) -> Path:
        return Path(self.model_dir) / self.vocab_file

    @property
    def tokenizer_config_path(self) -> Path:
        return Path(self.model_dir) / self.tokenizer_config_file

    @property
    def model_config_path(self) -> Path:
        return Path(self.model_dir) / self.model_config_file

    @property
    def onnx_path(self) -> Path:
        return Path(self.model_dir) / self.onnx_file


class PipelineConfig(BaseModel):
    """Timing settings for model readiness and request processing."""

    ready_timeout_s: float = 120.0
    request_timeout_s: float | None = None


class AggregationConfig(BaseModel):
    """Configuration for turning classified lines into a receipt."""

    store_markers: list[str] = Field(default_factory=lambda: ["STOP & SHOP"])


class AppConfig(BaseModel):
    """Top-level application configuration."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
