"""Centralized configuration management for the desktop agent."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class LLMConfig:
    """Configuration for the reasoning service."""

    model: str = "gpt-4.1"
    analysis_model: str = "gpt-4.1-mini"
    temperature: float = 0.2
    timeout: int = 60
    max_retries: int = 3
    max_tokens: Optional[int] = None

    @classmethod
    def from_env(cls) -> LLMConfig:
        """Load LLM configuration from environment variables."""
        return cls(
            model=os.getenv("LLM_MODEL", "gpt-4.1"),
            analysis_model=os.getenv("ANALYSIS_MODEL", "gpt-4.1-mini"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
            timeout=int(os.getenv("LLM_TIMEOUT", "60")),
            max_retries=int(os.getenv("LLM_MAX_RETRIES", "3")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS")) if os.getenv("LLM_MAX_TOKENS") else None,
        )


@dataclass
class CacheConfig:
    """Lifetimes and bounds for the target and analysis caches."""

    target_ttl: float = 120.0
    analysis_ttl: float = 300.0
    analysis_max_entries: int = 50

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load cache configuration from environment variables."""
        return cls(
            target_ttl=float(os.getenv("TARGET_CACHE_TTL", "120")),
            analysis_ttl=float(os.getenv("ANALYSIS_CACHE_TTL", "300")),
            analysis_max_entries=int(os.getenv("ANALYSIS_CACHE_MAX_ENTRIES", "50")),
        )


@dataclass
class OrchestratorConfig:
    """Tuning knobs for the per-turn tool loop."""

    max_tool_rounds: int = 8
    recent_capture_turns: int = 5
    follow_up_min_chars: int = 50
    max_history_turns: int = 8
    host_call_timeout: float = 30.0
    wrap_up_shortcut: bool = True
    concise_replies: bool = True

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Load orchestrator configuration from environment variables."""
        return cls(
            max_tool_rounds=int(os.getenv("MAX_TOOL_ROUNDS", "8")),
            recent_capture_turns=int(os.getenv("RECENT_CAPTURE_TURNS", "5")),
            follow_up_min_chars=int(os.getenv("FOLLOW_UP_MIN_CHARS", "50")),
            max_history_turns=int(os.getenv("MAX_HISTORY_TURNS", "8")),
            host_call_timeout=float(os.getenv("HOST_CALL_TIMEOUT", "30")),
            wrap_up_shortcut=_env_bool("WRAP_UP_SHORTCUT", "true"),
            concise_replies=_env_bool("CONCISE_REPLIES", "true"),
        )


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    log_level: str = "INFO"
    log_path: Path = field(default_factory=lambda: Path("logs/agent.log"))
    json_format: bool = True
    console_output: bool = True

    @classmethod
    def from_env(cls) -> LoggingConfig:
        """Load logging configuration from environment variables."""
        base_dir = Path(__file__).resolve().parent.parent
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_path=Path(os.getenv("LOG_PATH", base_dir / "logs" / "agent.log")),
            json_format=_env_bool("LOG_JSON_FORMAT", "true"),
            console_output=_env_bool("LOG_CONSOLE", "true"),
        )


@dataclass
class AppConfig:
    """Main application configuration."""

    llm: LLMConfig
    cache: CacheConfig
    orchestrator: OrchestratorConfig
    logging: LoggingConfig
    policy_path: Optional[Path] = None
    environment: str = "production"

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load complete configuration from environment variables."""
        policy_path = os.getenv("POLICY_PATH")
        return cls(
            llm=LLMConfig.from_env(),
            cache=CacheConfig.from_env(),
            orchestrator=OrchestratorConfig.from_env(),
            logging=LoggingConfig.from_env(),
            policy_path=Path(policy_path) if policy_path else None,
            environment=os.getenv("ENVIRONMENT", "production"),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if self.policy_path is not None and not self.policy_path.exists():
            raise FileNotFoundError(f"Policy file not found: {self.policy_path}")

        if not 0 <= self.llm.temperature <= 2:
            raise ValueError(f"Invalid LLM temperature: {self.llm.temperature}")

        if self.cache.analysis_max_entries < 1:
            raise ValueError(f"Invalid analysis cache size: {self.cache.analysis_max_entries}")

        if self.cache.target_ttl <= 0 or self.cache.analysis_ttl <= 0:
            raise ValueError("Cache TTLs must be positive")

        if self.orchestrator.max_tool_rounds < 1:
            raise ValueError(f"Invalid max_tool_rounds: {self.orchestrator.max_tool_rounds}")

        if self.orchestrator.host_call_timeout < 0:
            raise ValueError(f"Invalid host_call_timeout: {self.orchestrator.host_call_timeout}")


# Global configuration instance
config = AppConfig.from_env()
