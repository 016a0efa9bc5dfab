from __future__ import annotations

import re
from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import so every BaseSettings subclass sees the env vars
load_dotenv()

_OWNER_RE = re.compile(r"^[A-Za-z0-9-]+$")
_REPO_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class DatabaseSettings(BaseSettings):
    """Local record store settings. Env vars prefixed with DATABASE_."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = "sqlite+aiosqlite:///.specflow/specflow.db"
    echo: bool = False

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        if not v.startswith("sqlite+aiosqlite://"):
            msg = f"DATABASE_URL must use the sqlite+aiosqlite driver (got '{v}')"
            raise ValueError(msg)
        return v


class WorkspaceSettings(BaseSettings):
    """Document workspace settings. Env vars prefixed with WORKSPACE_."""

    model_config = SettingsConfigDict(env_prefix="WORKSPACE_")

    path: Path = Path(".specflow")


class GitHubSettings(BaseSettings):
    """Issue tracker settings. Env vars prefixed with GITHUB_."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_")

    token: str = ""  # empty = remote sync disabled
    owner: str = ""
    repo: str = ""
    api_url: str = "https://api.github.com"
    timeout_s: float = Field(10.0, gt=0)

    @field_validator("owner")
    @classmethod
    def _validate_owner(cls, v: str) -> str:
        if v and not _OWNER_RE.match(v):
            raise ValueError(
                f"GITHUB_OWNER must contain only alphanumeric characters and hyphens (got '{v}')"
            )
        return v

    @field_validator("repo")
    @classmethod
    def _validate_repo(cls, v: str) -> str:
        if v and not _REPO_RE.match(v):
            raise ValueError(
                "GITHUB_REPO must contain only alphanumeric characters, "
                f"hyphens, dots, and underscores (got '{v}')"
            )
        return v

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.owner and self.repo)


class BranchSettings(BaseSettings):
    """Spec branch settings. Env vars prefixed with BRANCH_."""

    model_config = SettingsConfigDict(env_prefix="BRANCH_")

    protected: str = "main,develop"  # comma-separated
    create_on_spec: bool = True

    @property
    def protected_set(self) -> frozenset[str]:
        return frozenset(b.strip() for b in self.protected.split(",") if b.strip())


_PHASE_FIELDS = ("requirements", "design", "tasks", "implementation", "review", "completed")


class StatusSettings(BaseSettings):
    """Phase → tracker status mapping. Env vars prefixed with STATUS_."""

    model_config = SettingsConfigDict(env_prefix="STATUS_")

    requirements: str = "Todo"
    design: str = "In Progress"
    tasks: str = "In Progress"  # deprecated phase
    implementation: str = "In Progress"
    review: str = "In Review"
    completed: str = "Done"
    available: str = "Todo,In Progress,In Review,Done"

    @property
    def available_statuses(self) -> list[str]:
        return [s.strip() for s in self.available.split(",") if s.strip()]

    @model_validator(mode="after")
    def _validate(self) -> Self:
        available = self.available_statuses
        for phase in _PHASE_FIELDS:
            status = getattr(self, phase)
            if status not in available:
                raise ValueError(
                    f"STATUS_{phase.upper()} '{status}' is not one of {available}"
                )
        return self

    def status_for(self, phase: str) -> str:
        if phase not in _PHASE_FIELDS:
            raise ValueError(f"Unknown phase '{phase}'")
        return getattr(self, phase)


class WorkflowSettings(BaseSettings):
    """Event dispatch settings. Env vars prefixed with WORKFLOW_."""

    model_config = SettingsConfigDict(env_prefix="WORKFLOW_")

    ready_timeout_s: float = Field(5.0, gt=0, le=120)


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    branch: BranchSettings = Field(default_factory=BranchSettings)
    status: StatusSettings = Field(default_factory=StatusSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    log_level: str = "INFO"
    log_json: bool = False


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
