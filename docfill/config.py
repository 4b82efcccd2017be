import os
from dataclasses import dataclass, replace
from typing import Optional

XML_BACKEND_ENV = "DOCFILL_XML_BACKEND"
WORKER_BACKEND_ENV = "DOCFILL_WORKER_BACKEND"
COMPRESSION_LEVEL_ENV = "DOCFILL_COMPRESSION_LEVEL"
MAX_WORKERS_ENV = "DOCFILL_MAX_WORKERS"
EXECUTOR_ENV = "DOCFILL_EXECUTOR"
LINEBREAKS_ENV = "DOCFILL_LINEBREAKS"

BACKENDS = ("dom", "regex")
EXECUTORS = ("process", "thread", "none")


@dataclass(frozen=True)
class EngineConfig:
    xml_backend: str = "dom"
    worker_backend: str = "regex"
    compression_level: int = 6
    max_workers: int = 4
    executor: str = "process"
    linebreaks: bool = True

    def with_overrides(self, **changes) -> "EngineConfig":
        changes = {k: v for k, v in changes.items() if v is not None}
        return _validated(replace(self, **changes))


def _get_env(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def _get_int(name: str, default: int) -> int:
    value = _get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _get_bool(name: str, default: bool) -> bool:
    value = _get_env(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "y", "on"}


def _validated(config: EngineConfig) -> EngineConfig:
    if config.xml_backend not in BACKENDS:
        raise ValueError(f"{XML_BACKEND_ENV} must be one of {BACKENDS}, got {config.xml_backend!r}")
    if config.worker_backend not in BACKENDS:
        raise ValueError(f"{WORKER_BACKEND_ENV} must be one of {BACKENDS}, got {config.worker_backend!r}")
    if config.executor not in EXECUTORS:
        raise ValueError(f"{EXECUTOR_ENV} must be one of {EXECUTORS}, got {config.executor!r}")
    if not 0 <= config.compression_level <= 9:
        raise ValueError(f"{COMPRESSION_LEVEL_ENV} must be between 0 and 9, got {config.compression_level}")
    if config.max_workers < 1:
        raise ValueError(f"{MAX_WORKERS_ENV} must be at least 1, got {config.max_workers}")
    return config


def load_config() -> EngineConfig:
    defaults = EngineConfig()
    return _validated(
        EngineConfig(
            xml_backend=(_get_env(XML_BACKEND_ENV) or defaults.xml_backend).lower(),
            worker_backend=(_get_env(WORKER_BACKEND_ENV) or defaults.worker_backend).lower(),
            compression_level=_get_int(COMPRESSION_LEVEL_ENV, defaults.compression_level),
            max_workers=_get_int(MAX_WORKERS_ENV, defaults.max_workers),
            executor=(_get_env(EXECUTOR_ENV) or defaults.executor).lower(),
            linebreaks=_get_bool(LINEBREAKS_ENV, defaults.linebreaks),
        )
    )
