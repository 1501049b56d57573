#!/usr/bin/env python3
"""Plan-only runner: prints what the controller would do without applying changes.

Usage:
  NAMESPACE=admgate ADMISSION_CONTROL=enable python3 tools/plan.py

Notes:
- Uses your local kubeconfig (same behavior as app.py).
- Does not create/update/delete any objects, webhook configs or namespace labels.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import read_ca_bundle  # noqa: E402
from cabundle import CABundleRegistry  # noqa: E402
from config import Settings, desired_gate_specs  # noqa: E402
from errors import AdmGateError, NotFound  # noqa: E402
from k8s import KIND_NAMESPACE, KubeStore, load_kube  # noqa: E402
from mode import admission_enabled, allowed_namespace_patterns  # noqa: E402
from nslabels import AllowedNamespaceSets, NamespaceLabelEnforcer, Presence, drifted  # noqa: E402
from policies.selectors import expected_selector, selector_matches_labels  # noqa: E402
from probe import ConnectivityProbe  # noqa: E402
from reconcile import ConfigReconciler, print_plan  # noqa: E402
from webhooks import VALIDATE_WEBHOOK  # noqa: E402


def main() -> int:
    load_kube()
    settings = Settings.from_env()
    store = KubeStore()

    bundles = CABundleRegistry()
    ca = read_ca_bundle(settings.ca_bundle_path)
    for svc in settings.services:
        bundles.set_bundle(svc, ca)

    try:
        ns_obj = store.get(KIND_NAMESPACE, "", settings.namespace)
    except NotFound:
        ns_obj = None
    enabled = admission_enabled(ns_obj)

    probe = ConnectivityProbe(store, bundles, settings.namespace)
    reconciler = ConfigReconciler(store, bundles, settings.namespace, port_discovery=probe.get_service_probe_info)
    for spec in desired_gate_specs(settings):
        try:
            print_plan(reconciler.plan(spec, enabled))
        except AdmGateError as e:
            print(f"[plan] name={spec.name} read failed: {e}")

    sets = AllowedNamespaceSets.from_patterns(
        allowed_namespace_patterns(ns_obj, settings.allowed_namespaces),
        settings.default_allowed_namespaces,
    )
    enforcer = NamespaceLabelEnforcer(
        store, settings.namespace, sets, settings.ns_selector_value, settings.control_plane_selector_op
    )
    selector = expected_selector(VALIDATE_WEBHOOK)
    reviewed = 0
    namespaces = store.list(KIND_NAMESPACE)
    for ns in namespaces:
        meta = ns.get("metadata", {}) or {}
        name = meta.get("name", "")
        labels = meta.get("labels", {}) or {}
        desired = enforcer.desired_labels(enabled, name)
        if drifted(desired, labels):
            want = sorted(k for k, v in desired.items() if v is Presence.MUST_EXIST and k not in labels)
            drop = sorted(k for k, v in desired.items() if v is Presence.MUST_NOT_EXIST and k in labels)
            print(f"[plan] namespace={name} add={want} remove={drop}")
        if selector_matches_labels(selector, labels):
            reviewed += 1
    print(f"[plan] namespaces reviewed by {VALIDATE_WEBHOOK}: {reviewed}/{len(namespaces)} (current labels)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
