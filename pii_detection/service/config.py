# pii_detection/service/config.py

"""Application configuration using Pydantic Settings.

Manages environment variables, defaults, and validation rules.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Global application settings.

    Loads values from environment variables (prefix 'PII_') or .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="PII_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # NER
    spacy_model: str = Field(
        default="xx_ent_wiki_sm", description="Multilingual spaCy NER model name."
    )

    enable_ner: bool = Field(
        default=True, description="Run the NER model alongside regex detection."
    )

    ner_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Per-attempt NER inference timeout."
    )

    ner_max_retries: int = Field(
        default=1, ge=0, le=5, description="Retries after a failed NER attempt."
    )

    ner_confidence_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="NER tokens scoring below this are discarded.",
    )

    ner_default_score: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Score assigned to NER entities (spaCy does not expose per-entity scores).",
    )

    # Rules and preprocessing
    rule_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Initial confidence of regex matches.",
    )

    enable_normalization: bool = Field(
        default=True, description="Normalize text before detection."
    )

    rules_path: Optional[str] = Field(
        default=None, description="YAML/JSON file with document type rules."
    )

    deny_list_path: Optional[str] = Field(
        default=None, description="YAML/JSON file with deny-list entries."
    )

    enable_address_linking: bool = Field(
        default=True, description="Merge nearby street and postal locality matches into one address."
    )

    # Worker
    max_workers: Optional[int] = Field(
        default=None, ge=1, description="Worker threads; defaults to the CPU count."
    )

    progress_queue_size: int = Field(
        default=100, ge=1, description="Capacity of the progress event queue."
    )

    log_level: str = Field(default="INFO", description="Root logging level.")

    @field_validator("spacy_model")
    @classmethod
    def validate_model_name(cls, v: str) -> str:
        """Ensure model name is not empty."""
        if not v.strip():
            raise ValueError("SpaCy model name cannot be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level


# Singleton settings instance
settings = Settings()
