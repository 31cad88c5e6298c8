"""
Batch apply of declared objects.

Each object is reconciled on its own worker with its own transport client,
so workers share nothing but the APIC endpoint:

  present: Read -> absent ? Create : (drift ? Update : UNCHANGED)
  absent:  Read -> absent ? ALREADY_ABSENT : Delete

In dry-run mode only the Read runs and the decision is reported as
WOULD_CREATE / WOULD_UPDATE / WOULD_DELETE. A failing object is recorded as
ERROR (or EXCEPTION for unexpected errors) and never aborts the run.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ReconcileError
from .logging_setup import bind_context
from .models import ManagedObjectSpec, drift_keys
from .objects import DeclaredObject
from .reconciler import ManagedObjectReconciler

ClientFactory = Callable[[], Any]

SUMMARY_ORDER = (
    "CREATED", "UPDATED", "UNCHANGED", "DELETED", "ALREADY_ABSENT",
    "WOULD_CREATE", "WOULD_UPDATE", "WOULD_DELETE", "ERROR", "EXCEPTION",
)


@dataclass(frozen=True)
class ApplyResult:
    index: int
    dn: str
    status: str
    drift: Tuple[str, ...] = ()
    attempts: int = 0
    error: str = ""


class BatchApplier:
    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        reconciler_options: Optional[Dict[str, Any]] = None,
        concurrency: int = 4,
        dry_run: bool = False,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.client_factory = client_factory
        self.options = dict(reconciler_options or {})
        self.concurrency = max(1, int(concurrency))
        self.dry_run = dry_run
        self.log = logger or logging.getLogger("apicsync.applier")

    def apply(self, objects: Sequence[DeclaredObject]) -> Tuple[List[ApplyResult], Dict[str, int]]:
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="apicsync") as pool:
            futures = [pool.submit(self._reconcile_one, idx, obj) for idx, obj in enumerate(objects)]
            results = [f.result() for f in futures]

        counts: Dict[str, int] = {}
        for res in results:
            counts[res.status] = counts.get(res.status, 0) + 1
        return results, counts

    def _reconcile_one(self, idx: int, obj: DeclaredObject) -> ApplyResult:
        dn = obj.spec.distinguished_name
        log = bind_context(self.log, dn=dn)
        client = self.client_factory()
        try:
            reconciler = ManagedObjectReconciler(client, logger=log, **self.options)
            if obj.state == "absent":
                return self._ensure_absent(idx, obj.spec, reconciler)
            return self._ensure_present(idx, obj.spec, reconciler)
        except ReconcileError as e:
            log.error("%s: reconciliation failed: %s", dn, e)
            return ApplyResult(idx, dn, "ERROR", attempts=e.attempts, error=str(e))
        except Exception as e:
            log.exception("%s: unexpected error", dn)
            return ApplyResult(idx, dn, "EXCEPTION", error=str(e))
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

    def _ensure_present(self, idx: int, spec: ManagedObjectSpec, reconciler: ManagedObjectReconciler) -> ApplyResult:
        dn = spec.distinguished_name
        probe = spec.detached()
        reconciler.read(probe)

        if not probe.exists:
            if self.dry_run:
                return ApplyResult(idx, dn, "WOULD_CREATE", drift=tuple(sorted(spec.attributes)))
            res = reconciler.create(spec)
            self.log.info("%s: created (%s attributes)", dn, len(spec.attributes))
            return ApplyResult(idx, dn, res.status, res.drift, res.attempts)

        diff = drift_keys(spec.attributes, probe.attributes, spec.ignored_attribute_keys)
        if not diff:
            spec.attributes = probe.attributes
            spec.identity = probe.identity
            return ApplyResult(idx, dn, "UNCHANGED")
        if self.dry_run:
            return ApplyResult(idx, dn, "WOULD_UPDATE", drift=diff)
        res = reconciler.update(spec)
        self.log.info("%s: updated drifted keys %s", dn, ", ".join(diff))
        return ApplyResult(idx, dn, res.status, diff, res.attempts)

    def _ensure_absent(self, idx: int, spec: ManagedObjectSpec, reconciler: ManagedObjectReconciler) -> ApplyResult:
        dn = spec.distinguished_name
        probe = spec.detached()
        reconciler.read(probe)
        if not probe.exists:
            spec.identity = ""
            return ApplyResult(idx, dn, "ALREADY_ABSENT")
        if self.dry_run:
            return ApplyResult(idx, dn, "WOULD_DELETE")
        spec.identity = probe.identity
        res = reconciler.delete(spec)
        self.log.info("%s: %s", dn, res.status.lower())
        return ApplyResult(idx, dn, res.status, attempts=res.attempts)


def summarize_counts(counts: Dict[str, int]) -> str:
    parts = [f"{k}={counts.get(k, 0)}" for k in SUMMARY_ORDER if counts.get(k, 0) or k in SUMMARY_ORDER[:5]]
    return " | ".join(parts)


def exit_code_from_counts(counts: Dict[str, int]) -> int:
    if counts.get("ERROR", 0) or counts.get("EXCEPTION", 0):
        return 2
    return 0
