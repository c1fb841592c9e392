"""
Pipeline configuration loaded from environment variables.
"""
import os
import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ParseErrorPolicy(str, Enum):
    THROW = "throw"
    RETURN_RAW = "return_raw"


def parse_bool(value: Optional[str]) -> bool:
    if not value:
        return False
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(float(raw))
    except ValueError:
        raise ConfigurationError(f"{name} must be a number. Received: {raw!r}")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number. Received: {raw!r}")


@dataclass
class PipelineSettings:
    # Packing / fan-out
    char_threshold: int = 10_000
    chunk_concurrency: int = 4
    reduce_group_size: int = 8
    reduce_concurrency: int = 4
    batch_concurrency: int = 4
    category_top_n: int = 2

    # Budget
    rps: float = 4.0
    burst: Optional[float] = None
    rpm: int = 0
    rpd: int = 0
    tpm: int = 0
    strict_tpm: bool = False

    # Client behaviour
    retry_max: int = 3
    retry_base_ms: int = 1000
    retry_max_ms: int = 8000
    timeout_ms: int = 60_000
    max_concurrency: int = 0
    parse_error_policy: ParseErrorPolicy = ParseErrorPolicy.THROW
    temperature: float = 0.2

    # Backend
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None

    # Local output
    out_dir: Path = field(default_factory=lambda: Path('./out'))

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> 'PipelineSettings':
        """Build settings from the process environment (and an optional .env file)."""
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        rps = _env_float('LLM_RPS', 4.0)
        policy_raw = os.getenv('LLM_PARSE_ERROR', ParseErrorPolicy.THROW.value).strip().lower()
        try:
            policy = ParseErrorPolicy(policy_raw)
        except ValueError:
            raise ConfigurationError(f"LLM_PARSE_ERROR must be 'throw' or 'return_raw'. Received: {policy_raw!r}")

        settings = cls(
            char_threshold=_env_int('CHUNK_CHARS', 10_000),
            chunk_concurrency=_env_int('LLM_CHUNK_CONCURRENCY', 4),
            reduce_group_size=_env_int('REDUCE_GROUP_SIZE', 8),
            reduce_concurrency=_env_int('REDUCE_CONCURRENCY', 4),
            batch_concurrency=_env_int('LLM_CONCURRENCY', 4),
            category_top_n=_env_int('CATEGORY_TOP_N', 2),
            rps=rps,
            burst=_env_float('LLM_BURST', None),
            rpm=_env_int('LLM_RPM', 0),
            rpd=_env_int('LLM_RPD', 0),
            tpm=_env_int('LLM_TPM', 0),
            strict_tpm=parse_bool(os.getenv('LLM_TPM_STRICT')),
            retry_max=_env_int('LLM_RETRY_MAX', 3),
            retry_base_ms=_env_int('LLM_RETRY_BASE_MS', 1000),
            retry_max_ms=_env_int('LLM_RETRY_MAX_MS', 8000),
            timeout_ms=_env_int('LLM_TIMEOUT_MS', 60_000),
            max_concurrency=_env_int('LLM_MAX_CONCURRENCY', 0),
            parse_error_policy=policy,
            temperature=_env_float('LLM_TEMPERATURE', 0.2),
            model=os.getenv('OPENAI_MODEL', 'gpt-4o-mini'),
            base_url=os.getenv('OPENAI_BASE_URL') or None,
            out_dir=Path(os.getenv('OUT_DIR', './out')),
        )
        settings.validate()
        return settings

    def validate(self) -> 'PipelineSettings':
        """Fail fast on values the pipeline cannot run with."""
        positive = {
            'char_threshold': self.char_threshold,
            'chunk_concurrency': self.chunk_concurrency,
            'reduce_concurrency': self.reduce_concurrency,
            'batch_concurrency': self.batch_concurrency,
            'category_top_n': self.category_top_n,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive. Received: {value}")
        if self.reduce_group_size < 2:
            raise ConfigurationError(f"reduce_group_size must be at least 2. Received: {self.reduce_group_size}")

        non_negative = {
            'rps': self.rps, 'rpm': self.rpm, 'rpd': self.rpd, 'tpm': self.tpm,
            'retry_max': self.retry_max, 'retry_base_ms': self.retry_base_ms,
            'retry_max_ms': self.retry_max_ms, 'timeout_ms': self.timeout_ms,
            'max_concurrency': self.max_concurrency,
        }
        for name, value in non_negative.items():
            if value < 0 or (isinstance(value, float) and math.isnan(value)):
                raise ConfigurationError(f"{name} must not be negative. Received: {value}")
        if self.burst is not None and self.burst <= 0:
            raise ConfigurationError(f"burst must be positive. Received: {self.burst}")
        return self
