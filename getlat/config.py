from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
import types
import typing
from typing import Any, get_args, get_origin

ENV_PREFIX = "GETLAT_"


class StartupError(RuntimeError):
    pass


class ConfigError(StartupError):
    pass


class Instrumentation(str, Enum):
    COARSE = "coarse"
    DETAILED = "detailed"


class OutputFormat(str, Enum):
    TEXT = "text"
    NDJSON = "ndjson"


def _parse_bool(value: str) -> bool:
    val = str(value).strip().lower()
    if val in {"1", "true", "yes", "y", "on"}:
        return True
    if val in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"invalid bool: {value}")


def _parse_number(value: str, target_type: type) -> Any:
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _unwrap_optional(field_type: Any) -> tuple[Any, bool]:
    if isinstance(field_type, str):
        parts = [part.strip() for part in field_type.split("|")]
        if len(parts) == 2 and "None" in parts:
            base = parts[0] if parts[1] == "None" else parts[1]
            return base, True
        return field_type, False
    origin = get_origin(field_type)
    union_type = getattr(types, "UnionType", None)
    if origin not in (typing.Union, union_type):
        return field_type, False
    args = get_args(field_type)
    if args and type(None) in args and len(args) == 2:
        base = args[0] if args[1] is type(None) else args[1]
        return base, True
    return field_type, False


def _is_field_type(field_type: Any, expected: type, expected_name: str) -> bool:
    base_type, _is_optional = _unwrap_optional(field_type)
    if base_type is expected:
        return True
    if isinstance(base_type, str) and base_type == expected_name:
        return True
    return False


def _scalar_type(field_type: Any) -> type:
    for expected, name in ((bool, "bool"), (int, "int"), (float, "float")):
        if _is_field_type(field_type, expected, name):
            return expected
    return str


def _parse_optional(raw: str, target_type: type) -> Any:
    text = str(raw).strip()
    if text == "":
        return None
    lower = text.lower()
    if lower in {"none", "null"}:
        return None
    if target_type is bool:
        return _parse_bool(text)
    return _parse_number(text, target_type)


@dataclass(frozen=True)
class WorkerConfig:
    bucket: str
    key: str
    window_size: int = 30
    instrumentation: Instrumentation = Instrumentation.DETAILED

    @property
    def detailed(self) -> bool:
        return self.instrumentation is Instrumentation.DETAILED


@dataclass(frozen=True)
class TransportConfig:
    dial_timeout_seconds: float = 15.0
    keepalive_interval_seconds: float = 30.0
    max_idle_per_host: int = 10
    max_idle: int = 100
    idle_timeout_seconds: float = 90.0
    tls_handshake_timeout_seconds: float = 10.0
    read_timeout_seconds: float | None = None

    @property
    def connect_timeout_seconds(self) -> float:
        # urllib3 covers TCP connect and the TLS handshake with one timeout.
        return self.dial_timeout_seconds + self.tls_handshake_timeout_seconds

    @property
    def host_pools(self) -> int:
        return max(1, self.max_idle // max(1, self.max_idle_per_host))


@dataclass
class Config:
    region: str = ""
    endpoint_url: str | None = None
    bucket: str = ""
    key: str = ""
    size: int = 30
    concurrency: int = 10
    ssl: bool = False
    instrumentation: str = Instrumentation.DETAILED.value
    output_format: str = OutputFormat.TEXT.value
    presign_expires_seconds: int = 3600
    dial_timeout_seconds: float = 15.0
    keepalive_interval_seconds: float = 30.0
    max_idle_per_host: int = 10
    max_idle: int = 100
    idle_timeout_seconds: float = 90.0
    tls_handshake_timeout_seconds: float = 10.0
    read_timeout_seconds: float | None = None

    def apply_overrides(self, overrides: dict[str, Any]) -> "Config":
        for field in fields(self):
            name = field.name
            if name in overrides:
                value = overrides[name]
                if value is None:
                    _base_type, is_optional = _unwrap_optional(field.type)
                    if is_optional:
                        setattr(self, name, None)
                    continue
                setattr(self, name, value)
        return self

    @classmethod
    def from_env_and_cli(cls, cli_overrides: dict[str, Any], env: dict[str, str]) -> "Config":
        cfg = cls()
        for field in fields(cfg):
            env_key = ENV_PREFIX + field.name.upper()
            if env_key not in env:
                continue
            raw = env[env_key]
            _base_type, is_optional = _unwrap_optional(field.type)
            target = _scalar_type(field.type)
            if is_optional:
                value = _parse_optional(raw, target)
            elif target is bool:
                value = _parse_bool(raw)
            elif target in (int, float):
                value = _parse_number(raw, target)
            else:
                value = raw
            setattr(cfg, field.name, value)
        # CLI flags win over the environment.
        return cfg.apply_overrides(cli_overrides)

    def validate(self) -> "Config":
        if not self.bucket:
            raise ConfigError("bucket is required")
        if not self.key:
            raise ConfigError("key is required")
        if self.size < 1:
            raise ConfigError(f"size must be >= 1, got {self.size}")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.presign_expires_seconds < 1:
            raise ConfigError("presign_expires_seconds must be >= 1")
        if self.max_idle_per_host < 1 or self.max_idle < 1:
            raise ConfigError("idle connection caps must be >= 1")
        try:
            Instrumentation(self.instrumentation)
        except ValueError:
            raise ConfigError(f"invalid instrumentation: {self.instrumentation}") from None
        try:
            OutputFormat(self.output_format)
        except ValueError:
            raise ConfigError(f"invalid output format: {self.output_format}") from None
        return self

    def worker_config(self) -> WorkerConfig:
        return WorkerConfig(
            bucket=self.bucket,
            key=self.key,
            window_size=self.size,
            instrumentation=Instrumentation(self.instrumentation),
        )

    def transport_config(self) -> TransportConfig:
        return TransportConfig(
            dial_timeout_seconds=self.dial_timeout_seconds,
            keepalive_interval_seconds=self.keepalive_interval_seconds,
            max_idle_per_host=self.max_idle_per_host,
            max_idle=self.max_idle,
            idle_timeout_seconds=self.idle_timeout_seconds,
            tls_handshake_timeout_seconds=self.tls_handshake_timeout_seconds,
            read_timeout_seconds=self.read_timeout_seconds,
        )
