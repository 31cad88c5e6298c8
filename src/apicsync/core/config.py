from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .models import Operation
from .reconciler import DeleteStrategy
from .retry import RetryPolicy


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False
    concurrency: int = 4


@dataclass
class ApicSection:
    base_url: str = ""
    username: str = ""
    password: str = ""       # secret – never log in clear text
    verify_tls: bool = True
    timeout_sec: int = 30


@dataclass
class RetrySection:
    max_attempts: int = 3
    delay_sec: float = 30.0
    jitter_sec: float = 0.005
    operations: List[str] = field(default_factory=lambda: [op.value for op in Operation])

    def policies(self) -> Dict[Operation, RetryPolicy]:
        """One policy per operation; operations not opted in run exactly once."""
        enabled = {Operation(op) for op in self.operations}
        retrying = RetryPolicy(self.max_attempts, self.delay_sec, self.jitter_sec)
        return {op: (retrying if op in enabled else RetryPolicy.single_attempt()) for op in Operation}


@dataclass
class ReconcileSection:
    delete_strategy: str = DeleteStrategy.DELETE.value


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    apic: ApicSection
    retry: RetrySection
    reconcile: ReconcileSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id

    def reconciler_options(self) -> Dict[str, Any]:
        return {
            "policies": self.retry.policies(),
            "delete_strategy": DeleteStrategy(self.reconcile.delete_strategy),
        }


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./apicsync.yml",
    os.path.expanduser("~/.config/apicsync/config.yml"),
    "/etc/apicsync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False, "concurrency": 4},
    "apic": {
        "base_url": "",
        "username": "",
        "password": "",
        "verify_tls": True,
        "timeout_sec": 30,
    },
    "retry": {
        "max_attempts": 3,
        "delay_sec": 30.0,
        "jitter_sec": 0.005,
        "operations": [op.value for op in Operation],
    },
    "reconcile": {"delete_strategy": DeleteStrategy.DELETE.value},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

_BOOL_KEYS = {"verify_tls", "dry_run"}
_INT_KEYS = {"timeout_sec", "max_attempts", "concurrency"}
_FLOAT_KEYS = {"delay_sec", "jitter_sec"}
_LIST_KEYS = {"operations"}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _load_dotenv() -> None:
    """Load a .env found from the current working directory, if any."""
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path, override=False)


def _env_to_dict(prefix: str = "APICSYNC_") -> Dict[str, Any]:
    """
    Convert APICSYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix) or "__" not in key[plen:]:
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(repl(x)) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans, numbers and comma lists in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        key = key_path[-1] if key_path else ""
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if key in _LIST_KEYS:
            items = obj.split(",") if isinstance(obj, str) else list(obj or [])
            return [str(i).strip().lower() for i in items if str(i).strip()]
        if key in _BOOL_KEYS:
            return to_bool(obj)
        try:
            if key in _INT_KEYS:
                return int(obj)
            if key in _FLOAT_KEYS:
                return float(obj)
        except (TypeError, ValueError):
            return obj
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    problems = []
    apic = cfg.get("apic", {})
    if not apic.get("base_url"):
        problems.append("missing apic.base_url")
    if not apic.get("username"):
        problems.append("missing apic.username")

    retry = cfg.get("retry", {})
    known_ops = {op.value for op in Operation}
    unknown = [op for op in retry.get("operations", []) if op not in known_ops]
    if unknown:
        problems.append("unknown retry.operations: " + ", ".join(unknown))
    for key in ("max_attempts", "delay_sec", "jitter_sec"):
        val = retry.get(key)
        if not isinstance(val, (int, float)) or val < 0:
            problems.append(f"retry.{key} must be a non-negative number")

    strategy = cfg.get("reconcile", {}).get("delete_strategy")
    if strategy not in {s.value for s in DeleteStrategy}:
        problems.append(f"unknown reconcile.delete_strategy: {strategy}")

    if problems:
        raise ValueError("Invalid configuration: " + "; ".join(problems))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "APICSYNC_",
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix APICSYNC_, nested via __; .env honoured)
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - basic type coercion (bool/int/float/list)
      - validation of connection, retry and delete settings
    """
    _load_dotenv()
    file_cfg = _load_first_existing(files)
    env_cfg = _env_to_dict(env_prefix)

    # Combine: defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    return AppConfig(
        app=AppSection(**merged.get("app", {})),
        apic=ApicSection(**merged.get("apic", {})),
        retry=RetrySection(**merged.get("retry", {})),
        reconcile=ReconcileSection(**merged.get("reconcile", {})),
        logging=LoggingSection(**merged.get("logging", {})),
    )
