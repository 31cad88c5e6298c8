"""
Reconciliation state machine for one managed object.

Each operation runs:
    transport call -> interpret -> {SUCCESS -> project, NOT_FOUND -> no-op, REMOTE_ERROR -> retry or fail}

Create/Update POST the desired attributes, then re-derive the authoritative
attribute set with a Read on a detached copy; identity is set only after both
succeed. A refresh that finds nothing leaves the empty projection. Read
clears `identity` when the object is gone.
Delete clears `identity` on success, including when the APIC says the object
is already absent (codes 1/107).
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from .errors import ReconcileError
from .interpreter import Outcome, interpret
from .models import ManagedObjectSpec, Operation, ReconcileResult, drift_keys
from .payload import LifecycleState, build_payload
from .projector import project, project_tree
from .retry import RetryPolicy, with_retry
from .tree import Tree

T = TypeVar("T")


class DeleteStrategy(str, Enum):
    DELETE = "delete"   # HTTP DELETE on the object path
    STATUS = "status"   # POST with status "deleted"
    BY_DN = "by_dn"     # status "deleted" POST that also names the dn in its attributes


_WRITE_STATE = {
    Operation.CREATE: LifecycleState.CREATED_MODIFIED,
    Operation.UPDATE: LifecycleState.MODIFIED,
}


class ManagedObjectReconciler:
    """Create/Read/Update/Delete for ManagedObjectSpec against one APIC client."""

    def __init__(
        self,
        client: Any,
        *,
        policies: Optional[Dict[Operation, RetryPolicy]] = None,
        delete_strategy: DeleteStrategy = DeleteStrategy.DELETE,
        logger: Optional[logging.LoggerAdapter] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.client = client
        self.policies: Dict[Operation, RetryPolicy] = {op: RetryPolicy() for op in Operation}
        self.policies.update(policies or {})
        self.delete_strategy = DeleteStrategy(delete_strategy)
        self.log = logger or logging.getLogger("apicsync.reconciler")
        self.rng = rng

    # ------------- Operations -------------

    def create(self, spec: ManagedObjectSpec) -> ReconcileResult:
        return self._write(spec, Operation.CREATE, "CREATED")

    def update(self, spec: ManagedObjectSpec) -> ReconcileResult:
        return self._write(spec, Operation.UPDATE, "UPDATED")

    def read(self, spec: ManagedObjectSpec) -> ReconcileResult:
        dn = spec.distinguished_name
        self.log.debug("%s: Beginning Read", dn)
        before = dict(spec.attributes)

        def attempt() -> Optional[Dict[str, str]]:
            tree = self.client.call("GET", spec.path)
            outcome = interpret(tree, Operation.READ, spec.class_name)
            if outcome.outcome is Outcome.NOT_FOUND:
                return None
            outcome.raise_for_error()
            return project_tree(before, spec.ignored_attribute_keys, tree, spec.class_name)

        observed, attempts = self._run(Operation.READ, spec, "GET", attempt)
        if observed is None:
            spec.identity = ""
            self.log.info("%s: object not found remotely, clearing identity", dn)
            return ReconcileResult(Operation.READ, dn, "GONE", attempts)

        spec.attributes = observed
        spec.identity = dn
        self.log.debug("%s: Read finished successfully", dn)
        return ReconcileResult(
            Operation.READ, dn, "READ", attempts,
            drift_keys(before, observed, spec.ignored_attribute_keys),
        )

    def delete(self, spec: ManagedObjectSpec) -> ReconcileResult:
        dn = spec.distinguished_name
        self.log.debug("%s: Beginning Destroy", dn)
        method = "DELETE" if self.delete_strategy is DeleteStrategy.DELETE else "POST"

        def attempt() -> bool:
            outcome = interpret(self._delete_call(spec), Operation.DELETE, spec.class_name)
            outcome.raise_for_error()
            return outcome.benign

        already_absent, attempts = self._run(Operation.DELETE, spec, method, attempt)
        spec.identity = ""
        if already_absent:
            self.log.info("%s: object already absent, nothing to delete", dn)
        self.log.debug("%s: Destroy finished successfully", dn)
        return ReconcileResult(Operation.DELETE, dn, "ALREADY_ABSENT" if already_absent else "DELETED", attempts)

    # ------------- Internal -------------

    def _write(self, spec: ManagedObjectSpec, op: Operation, status: str) -> ReconcileResult:
        dn = spec.distinguished_name
        label = op.value.capitalize()
        self.log.debug("%s: Beginning %s", dn, label)
        before = dict(spec.attributes)
        try:
            payload = build_payload(spec.class_name, spec.attributes, _WRITE_STATE[op])
        except ReconcileError as exc:
            raise exc.with_context(dn=dn, method="POST", attempts=0)

        def attempt() -> None:
            tree = self.client.call("POST", spec.path, payload)
            interpret(tree, op, spec.class_name).raise_for_error()

        _, attempts = self._run(op, spec, "POST", attempt)

        # spec is only touched once both the write and its refresh succeeded
        refreshed = spec.detached()
        self.read(refreshed)
        if refreshed.exists:
            spec.attributes = refreshed.attributes
        else:
            self.log.warning("%s: not visible after %s, keeping an empty projection", dn, label)
            spec.attributes = project(before, spec.ignored_attribute_keys, {})
        spec.identity = dn
        self.log.debug("%s: %s finished successfully", dn, label)
        return ReconcileResult(op, dn, status, attempts, drift_keys(before, spec.attributes, spec.ignored_attribute_keys))

    def _delete_call(self, spec: ManagedObjectSpec) -> Tree:
        if self.delete_strategy is DeleteStrategy.DELETE:
            return self.client.call("DELETE", spec.path)
        if self.delete_strategy is DeleteStrategy.STATUS:
            payload = build_payload(spec.class_name, {}, LifecycleState.DELETED)
            return self.client.call("POST", spec.path, payload)
        return self.client.delete_by_dn(spec.distinguished_name, spec.class_name)

    def _run(self, op: Operation, spec: ManagedObjectSpec, method: str, fn: Callable[[], T]) -> Tuple[T, int]:
        seen = {"attempts": 0}

        def attempt(number: int) -> T:
            seen["attempts"] = number
            try:
                return fn()
            except ReconcileError as exc:
                exc.with_context(dn=spec.distinguished_name, method=method, attempts=number)
                raise

        result = with_retry(
            attempt,
            self.policies[op],
            describe=f"{op.value} object {spec.distinguished_name}",
            logger=self.log,
            rng=self.rng,
        )
        return result, seen["attempts"]
