"""
Application settings management.

Settings are loaded from environment variables with .env file support.
All configuration is validated using Pydantic.
"""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================

    config_dir: Path = Field(
        default=Path("config"),
        description="Directory containing YAML configuration files",
    )
    data_dir: Path = Field(
        default=Path("data"), description="Directory for database and other data files"
    )

    # ==========================================================================
    # State Storage
    # ==========================================================================

    database_path: Path = Field(
        default=Path("data/research_state.db"),
        description="Path to SQLite database holding the persisted app state",
    )
    storage_key: str = Field(
        default="research-ai-state",
        min_length=1,
        description="Key of the single persisted state record",
    )
    storage_version: int = Field(
        default=1,
        ge=1,
        description="Version stamped on the persisted record; mismatches are discarded",
    )

    # ==========================================================================
    # Server Configuration
    # ==========================================================================

    host: str = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=8000, ge=1, le=65535, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")


# ============================================================================
# Workflow Configuration (from YAML)
# ============================================================================


class FormConfig(BaseModel):
    """Form engine configuration."""

    fields_per_step: int = Field(
        default=5, ge=1, le=50, description="Visible fields shown per form step"
    )
    max_condition_depth: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Deepest nesting accepted in a visibility condition tree",
    )
    max_condition_nodes: int = Field(
        default=64,
        ge=1,
        le=4096,
        description="Largest number of nodes accepted in a visibility condition tree",
    )


class SessionConfig(BaseModel):
    """Chat session configuration."""

    default_title: str = Field(default="New Research")
    title_max_length: int = Field(
        default=50, ge=8, le=200, description="Derived session titles are cut here"
    )


class ProgressRule(BaseModel):
    """Maps a research system message to a progress increment.

    A rule applies when any of its keywords occurs in the message. Progress
    advances by ``increment`` but never past ``cap``.
    """

    keywords: List[str] = Field(default_factory=list)
    increment: int = Field(default=2, ge=0, le=100)
    cap: int = Field(default=80, ge=0, le=100)
    label: Optional[str] = Field(
        default=None, description="Status label; the message itself when null"
    )


class ResearchConfig(BaseModel):
    """Research progress and result handling configuration."""

    initial_progress: int = Field(default=5, ge=0, le=100)
    initial_status: str = Field(default="Initializing research agent...")
    complete_status: str = Field(default="Research complete!")
    failed_status: str = Field(default="Research failed. Please try again.")
    enforce_monotonic_progress: bool = Field(
        default=True,
        description="Ignore progress regressions within one research run",
    )
    fallback_summary_length: int = Field(default=500, ge=50, le=10000)
    status_label_length: int = Field(default=50, ge=10, le=500)
    progress_rules: List[ProgressRule] = Field(
        default_factory=lambda: [
            ProgressRule(
                keywords=["Using tool webSearch", "web-search"],
                increment=8,
                cap=60,
                label="Searching the web...",
            ),
            ProgressRule(
                keywords=["dataSynthesis", "data-synthesis"],
                increment=10,
                cap=85,
                label="Synthesizing data...",
            ),
            ProgressRule(
                keywords=["completed"],
                increment=5,
                cap=90,
                label="Processing results...",
            ),
        ]
    )
    default_rule: ProgressRule = Field(default_factory=ProgressRule)

    @field_validator("progress_rules")
    @classmethod
    def rules_need_keywords(cls, v: List[ProgressRule]) -> List[ProgressRule]:
        """Keyword-less rules would shadow every rule after them."""
        for index, rule in enumerate(v):
            if not rule.keywords:
                raise ValueError(f"progress_rules[{index}] has no keywords")
        return v


class WorkflowConfig(BaseModel):
    """
    Complete workflow configuration loaded from workflow_config.yaml.

    Holds the tunables of the form engine, session bookkeeping and
    research progress tracking.
    """

    form: FormConfig = Field(default_factory=FormConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    research: ResearchConfig = Field(default_factory=ResearchConfig)


def load_workflow_config(config_path: Optional[Path] = None) -> WorkflowConfig:
    """
    Load workflow configuration from YAML file.

    Args:
        config_path: Path to workflow_config.yaml. If None, uses default path.

    Returns:
        WorkflowConfig with validated settings

    Raises:
        ValueError: If config validation fails
    """
    if config_path is None:
        # Default path: config/workflow_config.yaml relative to project root
        current = Path(__file__).resolve().parent.parent.parent
        check_path = current / "config" / "workflow_config.yaml"
        if check_path.exists():
            config_path = check_path
        else:
            # Fallback to current working directory
            cwd_config = Path.cwd() / "config" / "workflow_config.yaml"
            if not cwd_config.exists():
                return WorkflowConfig()
            config_path = cwd_config

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        # Return default config if file not found
        return WorkflowConfig()

    with open(str(config_path)) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        return WorkflowConfig()

    return WorkflowConfig(**config_data)


# Global settings instance
settings = Settings()

# Global workflow config instance
workflow_config = load_workflow_config()
