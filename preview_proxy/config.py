from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_PORT = 3000
DEFAULT_MAX_FILE_SIZE_MB = 200
DEFAULT_CACHE_SECONDS = 86400
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0
DEFAULT_CONVERT_TIMEOUT_SECONDS = 120.0
DEFAULT_CACHE_DIR = "cache"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class PreviewSettings:
    cache_dir: Path = Path(DEFAULT_CACHE_DIR)
    port: int = DEFAULT_PORT
    host: str = "0.0.0.0"
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_MB * 1024 * 1024
    cache_seconds: float = DEFAULT_CACHE_SECONDS
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    convert_timeout_seconds: float = DEFAULT_CONVERT_TIMEOUT_SECONDS
    allowed_domains: tuple[str, ...] = ()
    allowed_extensions: tuple[str, ...] = ()
    soffice_bin: str | None = None
    office_errors_fatal: bool = False
    cache_max_entries: int | None = None
    cache_max_bytes: int | None = None
    cors_allowed_origins: tuple[str, ...] = field(default=("*",))
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["cache_dir"] = str(self.cache_dir)
        return payload

    def is_domain_allowed(self, host: str | None) -> bool:
        if not self.allowed_domains:
            return True
        normalized = (host or "").strip().lower().rstrip(".")
        if not normalized:
            return False
        return any(
            normalized == domain or normalized.endswith(f".{domain}")
            for domain in self.allowed_domains
        )

    def is_extension_allowed(self, extension: str | None) -> bool:
        if not self.allowed_extensions:
            return True
        return (extension or "").lower() in self.allowed_extensions


def _split_list(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def _normalize_extensions(values: list[str]) -> tuple[str, ...]:
    extensions: list[str] = []
    for value in values:
        cleaned = value.lower()
        if not cleaned.startswith("."):
            cleaned = f".{cleaned}"
        if cleaned not in extensions:
            extensions.append(cleaned)
    return tuple(extensions)


def _normalize_domains(values: list[str]) -> tuple[str, ...]:
    domains: list[str] = []
    for value in values:
        cleaned = value.lower().lstrip("*.").rstrip(".")
        if cleaned and cleaned not in domains:
            domains.append(cleaned)
    return tuple(domains)


def _int_value(raw: str | None, default: int) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _float_value(raw: str | None, default: float) -> float:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _optional_int(raw: str | None) -> int | None:
    if raw is None or not str(raw).strip():
        return None
    try:
        value = int(str(raw).strip())
    except ValueError:
        return None
    return value if value > 0 else None


def _cache_dir(raw: str | None) -> Path:
    """Relative cache directories are anchored to the working directory at load time."""
    path = Path(raw or DEFAULT_CACHE_DIR).expanduser()
    return path if path.is_absolute() else Path.cwd() / path


def load_settings(environ: Mapping[str, str] | None = None) -> PreviewSettings:
    env = os.environ if environ is None else environ

    max_file_size_mb = _int_value(env.get("MAX_FILE_SIZE"), DEFAULT_MAX_FILE_SIZE_MB)
    cors_origins = tuple(_split_list(env.get("PREVIEW_CORS_ALLOWED_ORIGINS"))) or ("*",)
    soffice_bin = (env.get("SOFFICE_BIN") or "").strip() or None

    return PreviewSettings(
        cache_dir=_cache_dir(env.get("PREVIEW_CACHE_DIR")),
        port=_int_value(env.get("PORT"), DEFAULT_PORT),
        host=(env.get("PREVIEW_HOST") or "0.0.0.0").strip(),
        max_file_size_bytes=max_file_size_mb * 1024 * 1024,
        cache_seconds=_float_value(env.get("CACHE_TIME"), DEFAULT_CACHE_SECONDS),
        fetch_timeout_seconds=_float_value(env.get("PREVIEW_FETCH_TIMEOUT"), DEFAULT_FETCH_TIMEOUT_SECONDS),
        convert_timeout_seconds=_float_value(
            env.get("PREVIEW_CONVERT_TIMEOUT"), DEFAULT_CONVERT_TIMEOUT_SECONDS
        ),
        allowed_domains=_normalize_domains(_split_list(env.get("PREVIEW_ALLOWED_DOMAINS"))),
        allowed_extensions=_normalize_extensions(_split_list(env.get("PREVIEW_ALLOWED_EXTENSIONS"))),
        soffice_bin=soffice_bin,
        office_errors_fatal=(env.get("PREVIEW_OFFICE_ERRORS_FATAL") or "").strip().lower() in _TRUE_VALUES,
        cache_max_entries=_optional_int(env.get("PREVIEW_CACHE_MAX_ENTRIES")),
        cache_max_bytes=_optional_int(env.get("PREVIEW_CACHE_MAX_BYTES")),
        cors_allowed_origins=cors_origins,
        log_level=(env.get("PREVIEW_LOG_LEVEL") or "INFO").strip().upper(),
    )
