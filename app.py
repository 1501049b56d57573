# app.py
from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import List, Optional

from cabundle import CABundleRegistry
from config import Settings, desired_gate_specs
from errors import AdmGateError
from gate import validate_gate_spec
from k8s import KIND_NAMESPACE, KubeStore, load_kube
from mode import admission_enabled, allowed_namespace_patterns
from nslabels import AllowedNamespaceSets, NamespaceLabelEnforcer
from probe import ConnectivityProbe
from reconcile import ConfigReconciler
from webhooks import GateSpec


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────
def read_ca_bundle(path: str) -> bytes:
    p = Path(path)
    if not p.exists():
        return b""
    return p.read_bytes()


def sync_ca_bundles(bundles: CABundleRegistry, settings: Settings, initial: bool) -> bool:
    """Load (initial) or re-check (rotation) the CA bundle for every webhook service."""
    data = read_ca_bundle(settings.ca_bundle_path)
    if not data:
        print(f"[controller] no CA bundle at {settings.ca_bundle_path} yet")
    changed = False
    for svc in settings.services:
        if initial:
            bundles.set_bundle(svc, data)
            changed = True
        elif bundles.reset_bundle(svc, data):
            changed = True
    return changed


def reconcile_all(reconciler: ConfigReconciler, specs: List[GateSpec], enabled: bool) -> None:
    for spec in specs:
        gate = validate_gate_spec(spec)
        if not gate.ok:
            print(f"[controller] {spec.name}: gate FAILED; refusing to reconcile")
            for e in gate.errors:
                print(f"[controller] gate error:   {e}")
            continue
        for w in gate.warnings:
            print(f"[controller] gate warning: {w}")
        try:
            reconciler.reconcile(spec, enabled)
        except AdmGateError as e:
            print(f"[controller] {spec.name}: {e}")


def report_failures(failures) -> None:
    for name, err in failures or []:
        print(f"[controller] namespace {name} not corrected: {err}")


def start_probe(probe: ConnectivityProbe, service: str, stop_event: threading.Event) -> threading.Thread:
    # polls for up to ~10s; keep it off the control loop
    def _run() -> None:
        res = probe.run_initiator(service, stop_event)
        print(f"[controller] probe service={service} outcome={res.outcome.value} polls={res.polls}")

    t = threading.Thread(target=_run, name=f"probe-{service}", daemon=True)
    t.start()
    return t


# ─────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────
def main() -> None:
    load_kube()
    settings = Settings.from_env()

    store = KubeStore()
    bundles = CABundleRegistry()

    stop_event = threading.Event()

    def _stop(signum, frame) -> None:
        print(f"[controller] signal {signum}; shutting down")
        stop_event.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    probe = ConnectivityProbe(store, bundles, settings.namespace, stop_event=stop_event)
    reconciler = ConfigReconciler(
        store,
        bundles,
        settings.namespace,
        port_discovery=probe.get_service_probe_info,
    )
    enforcer = NamespaceLabelEnforcer(
        store,
        settings.namespace,
        selector_value=settings.ns_selector_value,
        control_plane_op=settings.control_plane_selector_op,
    )
    specs = desired_gate_specs(settings)

    sync_ca_bundles(bundles, settings, initial=True)

    last_enabled: Optional[bool] = None
    probe_thread: Optional[threading.Thread] = None

    while not stop_event.is_set():
        ns_obj = None
        try:
            ns_obj = store.get(KIND_NAMESPACE, "", settings.namespace)
        except AdmGateError as e:
            print(f"[controller] cannot read namespace {settings.namespace}: {e}")

        enabled = admission_enabled(ns_obj)
        sets = AllowedNamespaceSets.from_patterns(
            allowed_namespace_patterns(ns_obj, settings.allowed_namespaces),
            settings.default_allowed_namespaces,
        )
        rotated = sync_ca_bundles(bundles, settings, initial=False)

        try:
            if last_enabled is None:
                enforcer.on_cache_refresh(sets)
                if settings.leader:
                    report_failures(enforcer.init_namespaces(enabled))
            elif enabled != last_enabled:
                enforcer.on_cache_refresh(sets)
                if settings.leader:
                    report_failures(enforcer.on_leader_policy_change(enabled))
            elif sets != enforcer.allowed_sets:
                report_failures(enforcer.refresh_allowed_sets(sets, settings.leader, enabled))
        except AdmGateError as e:
            print(f"[controller] namespace scan failed: {e}")

        reconcile_all(reconciler, specs, enabled)

        if enabled != last_enabled:
            print(f"[controller] admission control enabled={enabled}")

        want_probe = enabled and settings.probe and (rotated or enabled != last_enabled)
        if want_probe and (probe_thread is None or not probe_thread.is_alive()):
            probe_thread = start_probe(probe, settings.admission_service, stop_event)

        last_enabled = enabled
        stop_event.wait(settings.loop_seconds)

    if probe_thread is not None:
        probe_thread.join(timeout=5)
    print("[controller] stopped")


if __name__ == "__main__":
    main()
