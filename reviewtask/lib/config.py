"""
Configuration loaders for reviewtask.

Settings come from .pr-review/config.env (KEY=value, parsed by envparse).
Every key is optional; a missing file means all defaults. CLI flags are
applied on top by the commands, never by mutating module state.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path

from . import envparse

STORAGE_DIR_NAME = ".pr-review"
CONFIG_FILE_NAME = "config.env"

VALID_DEDUP_SCOPES = ("run", "comment")
VALID_INITIAL_STATUSES = ("todo", "pending")

DEFAULT_LOW_PRIORITY_PATTERNS = [
    "nit:", "nits:", "minor:", "suggestion:", "consider:", "optional:", "style:",
]


class ConfigError(Exception):
    """Invalid configuration. Raised before any work is done."""
    pass


@dataclass
class RunConfig:
    """Scheduling and persistence settings for one analyze run."""
    batch_size: int = 5
    max_batches: int = 1  # 0 = unlimited
    max_timeout: float = 600.0  # seconds, whole run
    resume: bool = True
    realtime_save: bool = False
    max_retries: int = 2  # retries after the first analyzer attempt
    retry_delay: float = 0.0
    checkpoint_max_age_hours: float = 24.0

    def validate(self) -> None:
        if self.batch_size <= 0:
            raise ConfigError(f"batch size must be positive, got {self.batch_size}")
        if self.max_batches < 0:
            raise ConfigError(f"max batches must be >= 0, got {self.max_batches}")
        if self.max_timeout <= 0:
            raise ConfigError(f"max timeout must be positive, got {self.max_timeout}")
        if self.max_retries < 0:
            raise ConfigError(f"max retries must be >= 0, got {self.max_retries}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry delay must be >= 0, got {self.retry_delay}")


@dataclass
class AnalysisSettings:
    """What the analyzer is told and how its output is post-processed."""
    user_language: str = "English"
    analysis_timeout: int = 300
    deduplication_enabled: bool = True
    similarity_threshold: float = 0.8
    dedup_scope: str = "run"  # "run" or "comment"
    process_nitpick_comments: bool = True
    low_priority_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_LOW_PRIORITY_PATTERNS))
    low_priority_status: str = ""  # empty = keep default status
    default_status: str = "todo"

    def validate(self) -> None:
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigError(
                f"similarity threshold must be between 0 and 1, got {self.similarity_threshold}"
            )
        if self.dedup_scope not in VALID_DEDUP_SCOPES:
            raise ConfigError(f"dedup scope must be one of {VALID_DEDUP_SCOPES}, got '{self.dedup_scope}'")
        if self.analysis_timeout <= 0:
            raise ConfigError(f"analysis timeout must be positive, got {self.analysis_timeout}")
        if self.default_status not in VALID_INITIAL_STATUSES:
            raise ConfigError(f"default status must be one of {VALID_INITIAL_STATUSES}")
        if self.low_priority_status and self.low_priority_status not in VALID_INITIAL_STATUSES:
            raise ConfigError(f"low priority status must be one of {VALID_INITIAL_STATUSES}")

    def is_low_priority(self, body: str) -> bool:
        """True when the comment starts (or has a line starting) with a low-priority marker."""
        lower = body.lower().lstrip()
        for pattern in self.low_priority_patterns:
            pattern = pattern.lower()
            if lower.startswith(pattern) or f"\n{pattern}" in lower:
                return True
        return False


@dataclass
class ReviewTaskConfig:
    run: RunConfig = field(default_factory=RunConfig)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)

    def validate(self) -> None:
        self.run.validate()
        self.analysis.validate()

    def with_overrides(self, **run_overrides) -> "ReviewTaskConfig":
        """Copy with RunConfig fields replaced. None values are ignored."""
        changes = {k: v for k, v in run_overrides.items() if v is not None}
        return ReviewTaskConfig(run=replace(self.run, **changes), analysis=self.analysis)


def get_storage_dir(repo_path: Path) -> Path:
    return repo_path / STORAGE_DIR_NAME


def get_unit_dir(storage_dir: Path, pr_number: int) -> Path:
    """Directory holding everything stored for one pull request."""
    return storage_dir / f"PR-{pr_number}"


def load_config(storage_dir: Path) -> ReviewTaskConfig:
    """Load config.env from the storage directory and return a validated config.

    Raises:
        ConfigError: if the file is malformed or holds invalid values
    """
    config_path = storage_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        return ReviewTaskConfig()

    try:
        env = envparse.load_env(config_path)
        run = RunConfig(
            batch_size=envparse.get_int(env, "BATCH_SIZE", 5),
            max_batches=envparse.get_int(env, "MAX_BATCHES", 1),
            max_timeout=envparse.get_float(env, "MAX_TIMEOUT", 600.0),
            resume=envparse.get_bool(env, "RESUME", True),
            realtime_save=envparse.get_bool(env, "REALTIME_SAVE", False),
            max_retries=envparse.get_int(env, "MAX_RETRIES", 2),
            retry_delay=envparse.get_float(env, "RETRY_DELAY", 0.0),
            checkpoint_max_age_hours=envparse.get_float(env, "CHECKPOINT_MAX_AGE_HOURS", 24.0),
        )
        analysis = AnalysisSettings(
            user_language=env.get("USER_LANGUAGE", "English") or "English",
            analysis_timeout=envparse.get_int(env, "ANALYSIS_TIMEOUT", 300),
            deduplication_enabled=envparse.get_bool(env, "DEDUPLICATION_ENABLED", True),
            similarity_threshold=envparse.get_float(env, "SIMILARITY_THRESHOLD", 0.8),
            dedup_scope=env.get("DEDUP_SCOPE", "run").lower(),
            process_nitpick_comments=envparse.get_bool(env, "PROCESS_NITPICK_COMMENTS", True),
            low_priority_patterns=envparse.get_list(
                env, "LOW_PRIORITY_PATTERNS", DEFAULT_LOW_PRIORITY_PATTERNS
            ),
            low_priority_status=env.get("LOW_PRIORITY_STATUS", "").lower(),
            default_status=env.get("DEFAULT_STATUS", "todo").lower(),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid {config_path}: {e}") from None

    config = ReviewTaskConfig(run=run, analysis=analysis)
    config.validate()
    return config
