"""Configuration loading and validation for Merge Reviewer."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class AIConfig:
    """AI completion service configuration."""

    api_key: str
    base_url: str = "https://api.groq.com/openai/v1"
    model: str = "llama-3.3-70b-versatile"
    max_tokens: int = 4096
    temperature: float = 0.3
    timeout_seconds: int = 60
    max_retries: int = 3
    context_limit_tokens: int = 8000


@dataclass
class GitHubSettings:
    """GitHub integration configuration."""

    token: str
    webhook_secret: str | None = None
    app_id: str | None = None
    private_key_path: str | None = None
    base_url: str | None = None
    web_url: str = "https://github.com"


@dataclass
class JobKindConfig:
    """Limits for one kind of background job."""

    max_concurrent: int
    max_retries: int
    retry_delay_seconds: int
    timeout_seconds: int


@dataclass
class JobsConfig:
    """Per-kind job limits."""

    pr_analysis: JobKindConfig = field(
        default_factory=lambda: JobKindConfig(
            max_concurrent=3, max_retries=0, retry_delay_seconds=30, timeout_seconds=600
        )
    )
    repository_indexing: JobKindConfig = field(
        default_factory=lambda: JobKindConfig(
            max_concurrent=1, max_retries=3, retry_delay_seconds=60, timeout_seconds=21600
        )
    )


@dataclass
class SchedulerConfig:
    """Scheduler loop timing."""

    poll_interval_seconds: float = 5
    error_backoff_seconds: float = 10
    cleanup_interval_seconds: float = 3600
    retention_seconds: float = 86400


@dataclass
class IntelligentContextConfig:
    """Context analysis and fetching configuration."""

    enabled: bool = True
    fallback_on_error: bool = True
    max_recommended_files: int = 10
    min_confidence_threshold: float = 0.3
    analysis_timeout_seconds: int = 30
    max_listed_paths: int = 200
    patch_preview_chars: int = 500
    fetch_concurrency: int = 5
    max_file_bytes: int = 100_000


@dataclass
class OrchestratorSettings:
    """Orchestrator configuration."""

    workflow_timeout_seconds: int = 300
    graceful_degradation: bool = True
    step_max_retries: int = 3
    step_timeout_seconds: int = 60
    base_delay_seconds: float = 1
    max_delay_seconds: float = 30
    comment_max_retries: int = 3


@dataclass
class CircuitBreakerSettings:
    """Circuit breaker thresholds, shared by every external dependency."""

    failure_threshold: int = 5
    recovery_timeout_seconds: int = 60
    half_open_max_calls: int = 3


@dataclass
class StoreSettings:
    """Review store configuration."""

    backend: str = "memory"
    path: str = "merge_reviewer.db"


@dataclass
class ServerSettings:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class Config:
    """Complete application configuration."""

    ai: AIConfig
    github: GitHubSettings
    jobs: JobsConfig = field(default_factory=JobsConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    intelligent_context: IntelligentContextConfig = field(default_factory=IntelligentContextConfig)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    circuit_breaker: CircuitBreakerSettings = field(default_factory=CircuitBreakerSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    server: ServerSettings = field(default_factory=ServerSettings)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file (default: config.yaml)

    Returns:
        Loaded configuration
    """
    if config_path is None:
        config_path = Path("config.yaml")
        if not config_path.exists():
            config_path = Path("config.example.yaml")

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}

    raw_config = _expand_env_vars(raw_config)
    return _parse_config(raw_config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ``${VAR}`` values."""
    if isinstance(obj, str):
        if obj.startswith("${") and obj.endswith("}"):
            return os.environ.get(obj[2:-1], "")
        return obj
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def _parse_job_kind(raw: dict[str, Any], default: JobKindConfig) -> JobKindConfig:
    return JobKindConfig(
        max_concurrent=raw.get("max_concurrent", default.max_concurrent),
        max_retries=raw.get("max_retries", default.max_retries),
        retry_delay_seconds=raw.get("retry_delay_seconds", default.retry_delay_seconds),
        timeout_seconds=raw.get("timeout_seconds", default.timeout_seconds),
    )


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw config dict into Config object."""
    ai_raw = raw.get("ai") or {}
    ai = AIConfig(
        api_key=ai_raw.get("api_key") or os.environ.get("AI_API_KEY", ""),
        base_url=ai_raw.get("base_url") or "https://api.groq.com/openai/v1",
        model=ai_raw.get("model", "llama-3.3-70b-versatile"),
        max_tokens=ai_raw.get("max_tokens", 4096),
        temperature=ai_raw.get("temperature", 0.3),
        timeout_seconds=ai_raw.get("timeout_seconds", 60),
        max_retries=ai_raw.get("max_retries", 3),
        context_limit_tokens=ai_raw.get("context_limit_tokens", 8000),
    )

    github_raw = raw.get("github") or {}
    github = GitHubSettings(
        token=github_raw.get("token") or os.environ.get("GITHUB_TOKEN", ""),
        webhook_secret=github_raw.get("webhook_secret") or os.environ.get("GITHUB_WEBHOOK_SECRET"),
        app_id=github_raw.get("app_id") or os.environ.get("GITHUB_APP_ID"),
        private_key_path=github_raw.get("private_key_path"),
        base_url=github_raw.get("base_url"),
        web_url=github_raw.get("web_url", "https://github.com"),
    )

    jobs_raw = raw.get("jobs") or {}
    defaults = JobsConfig()
    jobs = JobsConfig(
        pr_analysis=_parse_job_kind(jobs_raw.get("pr_analysis") or {}, defaults.pr_analysis),
        repository_indexing=_parse_job_kind(
            jobs_raw.get("repository_indexing") or {}, defaults.repository_indexing
        ),
    )

    sched_raw = raw.get("scheduler") or {}
    scheduler = SchedulerConfig(
        poll_interval_seconds=sched_raw.get("poll_interval_seconds", 5),
        error_backoff_seconds=sched_raw.get("error_backoff_seconds", 10),
        cleanup_interval_seconds=sched_raw.get("cleanup_interval_seconds", 3600),
        retention_seconds=sched_raw.get("retention_seconds", 86400),
    )

    ctx_raw = raw.get("intelligent_context") or {}
    intelligent_context = IntelligentContextConfig(
        enabled=ctx_raw.get("enabled", True),
        fallback_on_error=ctx_raw.get("fallback_on_error", True),
        max_recommended_files=ctx_raw.get("max_recommended_files", 10),
        min_confidence_threshold=ctx_raw.get("min_confidence_threshold", 0.3),
        analysis_timeout_seconds=ctx_raw.get("analysis_timeout_seconds", 30),
        max_listed_paths=ctx_raw.get("max_listed_paths", 200),
        patch_preview_chars=ctx_raw.get("patch_preview_chars", 500),
        fetch_concurrency=ctx_raw.get("fetch_concurrency", 5),
        max_file_bytes=ctx_raw.get("max_file_bytes", 100_000),
    )

    orch_raw = raw.get("orchestrator") or {}
    orchestrator = OrchestratorSettings(
        workflow_timeout_seconds=orch_raw.get("workflow_timeout_seconds", 300),
        graceful_degradation=orch_raw.get("graceful_degradation", True),
        step_max_retries=orch_raw.get("step_max_retries", 3),
        step_timeout_seconds=orch_raw.get("step_timeout_seconds", 60),
        base_delay_seconds=orch_raw.get("base_delay_seconds", 1),
        max_delay_seconds=orch_raw.get("max_delay_seconds", 30),
        comment_max_retries=orch_raw.get("comment_max_retries", 3),
    )

    cb_raw = raw.get("circuit_breaker") or {}
    circuit_breaker = CircuitBreakerSettings(
        failure_threshold=cb_raw.get("failure_threshold", 5),
        recovery_timeout_seconds=cb_raw.get("recovery_timeout_seconds", 60),
        half_open_max_calls=cb_raw.get("half_open_max_calls", 3),
    )

    store_raw = raw.get("store") or {}
    store = StoreSettings(
        backend=store_raw.get("backend", "memory"),
        path=store_raw.get("path", "merge_reviewer.db"),
    )

    server_raw = raw.get("server") or {}
    server = ServerSettings(
        host=server_raw.get("host", "0.0.0.0"),
        port=server_raw.get("port", 8080),
    )

    return Config(
        ai=ai,
        github=github,
        jobs=jobs,
        scheduler=scheduler,
        intelligent_context=intelligent_context,
        orchestrator=orchestrator,
        circuit_breaker=circuit_breaker,
        store=store,
        server=server,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of errors.

    Args:
        config: Configuration to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not config.ai.api_key:
        errors.append("Missing AI API key (set AI_API_KEY or ai.api_key)")

    has_app = bool(config.github.app_id and config.github.private_key_path)
    if not config.github.token and not has_app:
        errors.append(
            "Missing GitHub credentials (set GITHUB_TOKEN or github.app_id and github.private_key_path)"
        )

    if config.github.private_key_path and not Path(config.github.private_key_path).exists():
        errors.append(f"GitHub App private key not found: {config.github.private_key_path}")

    for name in ("pr_analysis", "repository_indexing"):
        kind = getattr(config.jobs, name)
        if kind.max_concurrent < 1:
            errors.append(f"jobs.{name}.max_concurrent must be at least 1")
        if kind.max_retries < 0:
            errors.append(f"jobs.{name}.max_retries must not be negative")
        if kind.timeout_seconds <= 0:
            errors.append(f"jobs.{name}.timeout_seconds must be positive")

    if not 0 <= config.intelligent_context.min_confidence_threshold <= 1:
        errors.append("intelligent_context.min_confidence_threshold must be between 0 and 1")

    if config.orchestrator.workflow_timeout_seconds <= 0:
        errors.append("orchestrator.workflow_timeout_seconds must be positive")

    if config.jobs.pr_analysis.timeout_seconds <= config.orchestrator.workflow_timeout_seconds:
        errors.append(
            "jobs.pr_analysis.timeout_seconds must be greater than "
            "orchestrator.workflow_timeout_seconds"
        )

    if config.circuit_breaker.failure_threshold < 1:
        errors.append("circuit_breaker.failure_threshold must be at least 1")

    if config.store.backend not in ("memory", "sqlite"):
        errors.append(f"Unknown store backend: {config.store.backend} (use memory or sqlite)")

    return errors
