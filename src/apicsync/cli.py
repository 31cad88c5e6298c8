"""
Command-line interface for apicsync.

Usage (examples):
  - Plan only (reads, no writes):
      python -m apicsync.cli apply --objects ./objects.yml --dry-run \
        --base-url https://apic.local --username admin --password secret

  - Reconcile every declared object:
      python -m apicsync.cli apply --objects ./objects.yml --base-url https://apic.local \
        --username admin --password secret --verify-tls false

  - Show the observed attributes of one object:
      python -m apicsync.cli read --dn uni/tn-demo --class-name fvTenant --key descr --key nameAlias
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Iterable, Tuple

from .core.apic_client import ApicClient
from .core.applier import BatchApplier, exit_code_from_counts, summarize_counts
from .core.config import AppConfig, load_config
from .core.errors import ReconcileError
from .core.logging_setup import bind_context, build_logger
from .core.models import ManagedObjectSpec
from .core.objects import ObjectsFileError, load_objects
from .core.reconciler import ManagedObjectReconciler

EXIT_ABSENT = 3


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default="", help="Explicit YAML config file")

    # APIC / HTTP
    p.add_argument("--base-url", default="", help="APIC base URL")
    p.add_argument("--username", default="", help="APIC username")
    p.add_argument("--password", default="", help="APIC password")
    p.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    p.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")

    # Retry
    p.add_argument("--retries", type=int, default=None, help="Retries after the first attempt")
    p.add_argument("--retry-delay", type=float, default=None, help="Base delay between attempts (seconds)")

    # Logging
    p.add_argument("--logs-dir", default=None, help="Logs base directory")
    p.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="apicsync", description="Reconcile APIC managed objects")
    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("apply", help="Reconcile every object declared in a YAML file")
    a.add_argument("--objects", required=True, help="Objects file (.yml)")
    a.add_argument("--dry-run", action="store_true", help="Read only, report planned changes")
    a.add_argument("--concurrency", type=int, default=None, help="Parallel workers")
    _add_common_args(a)

    r = sub.add_parser("read", help="Print the observed attributes of one object")
    r.add_argument("--dn", required=True, help="Distinguished name")
    r.add_argument("--class-name", required=True, help="Object class (e.g. fvTenant)")
    r.add_argument("--key", action="append", default=[], help="Attribute to project (repeatable)")
    _add_common_args(r)

    return p


def _set(d: Dict[str, Any], section: str, key: str, value: Any) -> None:
    if value is None or value == "":
        return
    d.setdefault(section, {})[key] = value


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    _set(out, "apic", "base_url", args.base_url)
    _set(out, "apic", "username", args.username)
    _set(out, "apic", "password", args.password)
    if args.verify_tls is not None:
        _set(out, "apic", "verify_tls", args.verify_tls == "true")
    _set(out, "apic", "timeout_sec", args.timeout_sec)
    _set(out, "retry", "max_attempts", args.retries)
    _set(out, "retry", "delay_sec", args.retry_delay)
    _set(out, "logging", "base_dir", args.logs_dir)
    _set(out, "logging", "console_level", args.console_level)
    _set(out, "logging", "file_level", args.file_level)
    if getattr(args, "dry_run", False):
        _set(out, "app", "dry_run", True)
    _set(out, "app", "concurrency", getattr(args, "concurrency", None))
    return out


def _bootstrap(args: argparse.Namespace, action: str) -> Tuple[AppConfig, Any]:
    overrides = _cli_overrides(args)
    cfg = load_config(overrides, files=(args.config,)) if args.config else load_config(overrides)
    logger = build_logger(
        run_id=cfg.run_id,
        action=action,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"apic": cfg.apic.base_url},
    )
    return cfg, logger


def _client_factory(cfg: AppConfig, logger: Any):
    def make() -> ApicClient:
        return ApicClient(
            cfg.apic.base_url,
            cfg.apic.username,
            cfg.apic.password,
            verify_tls=bool(cfg.apic.verify_tls),
            timeout_sec=int(cfg.apic.timeout_sec),
            logger=logger,
        )
    return make


def _apply_cmd(args: argparse.Namespace) -> int:
    cfg, logger = _bootstrap(args, "apply")
    logger.info("Starting apicsync apply (dry_run=%s)", cfg.app.dry_run)

    try:
        objects = load_objects(args.objects)
    except (ObjectsFileError, FileNotFoundError) as e:
        logger.error("Cannot load objects file: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 2
    logger.info("Loaded %s declared objects from %s", len(objects), args.objects)

    applier = BatchApplier(
        _client_factory(cfg, logger),
        reconciler_options=cfg.reconciler_options(),
        concurrency=cfg.app.concurrency,
        dry_run=cfg.app.dry_run,
        logger=logger,
    )
    results, counts = applier.apply(objects)
    for res in results:
        if res.drift:
            logger.info("%s: %s drift=%s", res.dn, res.status, ",".join(res.drift))
    summary = summarize_counts(counts)
    logger.info("Apply summary: %s", summary)
    print(summary)
    return exit_code_from_counts(counts)


def _read_cmd(args: argparse.Namespace) -> int:
    cfg, logger = _bootstrap(args, "read")
    spec = ManagedObjectSpec(
        distinguished_name=args.dn,
        class_name=args.class_name,
        attributes={k: "" for k in args.key},
    )
    client = _client_factory(cfg, logger)()
    try:
        reconciler = ManagedObjectReconciler(client, logger=bind_context(logger, dn=args.dn), **cfg.reconciler_options())
        reconciler.read(spec)
    except ReconcileError as e:
        logger.error("Read failed: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        client.close()

    if not spec.exists:
        print(f"{args.dn}: not found")
        return EXIT_ABSENT
    print(json.dumps({"dn": spec.identity, "class_name": spec.class_name, "attributes": spec.attributes}, indent=2))
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "apply":
        return _apply_cmd(args)
    if args.cmd == "read":
        return _read_cmd(args)

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
