from apicsync.core.applier import BatchApplier, exit_code_from_counts, summarize_counts
from apicsync.core.errors import TransportError
from apicsync.core.models import ManagedObjectSpec, Operation
from apicsync.core.objects import DeclaredObject
from apicsync.core.retry import RetryPolicy

NO_RETRY = {"policies": {op: RetryPolicy.single_attempt() for op in Operation}}


def _obj(dn, state="present", ignored=(), **attrs):
    spec = ManagedObjectSpec(dn, "fvTenant", attributes=attrs, ignored_attribute_keys=set(ignored))
    return DeclaredObject(spec=spec, state=state)


def _seed(apic, dn, **attrs):
    apic.objects[dn] = ("fvTenant", {"dn": dn, **attrs})


def test_apply_decides_per_object(apic):
    _seed(apic, "uni/tn-same", descr="same")
    _seed(apic, "uni/tn-drift", descr="old")
    _seed(apic, "uni/tn-remove", descr="x")
    objects = [
        _obj("uni/tn-new", descr="new"),
        _obj("uni/tn-same", descr="same"),
        _obj("uni/tn-drift", descr="fresh"),
        _obj("uni/tn-remove", state="absent"),
        _obj("uni/tn-never", state="absent"),
    ]
    applier = BatchApplier(lambda: apic, reconciler_options=NO_RETRY, concurrency=3)
    results, counts = applier.apply(objects)

    assert [r.status for r in results] == ["CREATED", "UNCHANGED", "UPDATED", "DELETED", "ALREADY_ABSENT"]
    assert results[2].drift == ("descr",)
    assert counts == {"CREATED": 1, "UNCHANGED": 1, "UPDATED": 1, "DELETED": 1, "ALREADY_ABSENT": 1}
    assert apic.objects["uni/tn-new"][1]["descr"] == "new"
    assert apic.objects["uni/tn-drift"][1]["descr"] == "fresh"
    assert "uni/tn-remove" not in apic.objects
    assert objects[0].spec.identity == "uni/tn-new"
    assert objects[3].spec.identity == ""
    # one client per object, each closed
    assert apic.closed == len(objects)


def test_ignored_keys_do_not_trigger_updates(apic):
    _seed(apic, "uni/tn-a", descr="same", nameAlias="server")
    objects = [_obj("uni/tn-a", ignored=["nameAlias"], descr="same", nameAlias="local")]
    results, _ = BatchApplier(lambda: apic, reconciler_options=NO_RETRY).apply(objects)
    assert results[0].status == "UNCHANGED"
    assert objects[0].spec.attributes == {"descr": "same", "nameAlias": "local"}


def test_dry_run_only_reads(apic):
    _seed(apic, "uni/tn-drift", descr="old")
    _seed(apic, "uni/tn-remove")
    objects = [
        _obj("uni/tn-new", descr="new"),
        _obj("uni/tn-drift", descr="fresh"),
        _obj("uni/tn-remove", state="absent"),
    ]
    results, counts = BatchApplier(lambda: apic, reconciler_options=NO_RETRY, dry_run=True).apply(objects)
    assert [r.status for r in results] == ["WOULD_CREATE", "WOULD_UPDATE", "WOULD_DELETE"]
    assert set(apic.methods()) == {"GET"}
    assert apic.objects["uni/tn-drift"][1]["descr"] == "old"
    assert exit_code_from_counts(counts) == 0


def test_failure_is_isolated_per_object(apic):
    class _Flaky:
        def call(self, method, path, payload=None):
            if "tn-bad" in path:
                raise TransportError("connection reset")
            return apic.call(method, path, payload)

    objects = [_obj("uni/tn-bad", descr="x"), _obj("uni/tn-good", descr="y")]
    results, counts = BatchApplier(_Flaky, reconciler_options=NO_RETRY, concurrency=2).apply(objects)
    assert results[0].status == "ERROR"
    assert "connection reset" in results[0].error and results[0].attempts == 1
    assert results[1].status == "CREATED"
    assert exit_code_from_counts(counts) == 2


def test_summary_line():
    line = summarize_counts({"CREATED": 2, "ERROR": 1})
    assert line.startswith("CREATED=2 | UPDATED=0 | UNCHANGED=0 | DELETED=0 | ALREADY_ABSENT=0")
    assert line.endswith("ERROR=1")
