#!/usr/bin/env python3
"""tools/conncheck.py

Run one side of the tag/echo connectivity test by hand.

  # initiator: write a tag on the webhook Service and wait up to 10s for the echo
  NAMESPACE=admgate python3 tools/conncheck.py

  # responder: echo a tag you saw in a Service UPDATE (what the gate does)
  ROLE=responder TAG=1718000000000000000 python3 tools/conncheck.py

Env vars understood:
  - NAMESPACE, ADMISSION_SERVICE (same as controller)
  - SERVICE: override which Service to probe
  - ROLE=initiator|responder, TAG (responder only)

Ctrl-C aborts the poll within a second.
"""

from __future__ import annotations

import os
import signal
import sys
import threading

# Allow executing from tools/ without installing as a package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cabundle import CABundleRegistry  # noqa: E402
from config import Settings  # noqa: E402
from k8s import KubeStore, load_kube  # noqa: E402
from probe import ConnectivityProbe, ProbeOutcome  # noqa: E402


def main() -> int:
    settings = Settings.from_env()
    service = os.environ.get("SERVICE", settings.admission_service)
    role = os.environ.get("ROLE", "initiator")

    load_kube()
    store = KubeStore()
    bundles = CABundleRegistry()
    # label keys only; the bundle itself doesn't matter here
    bundles.set_bundle(service, b"")

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    probe = ConnectivityProbe(store, bundles, settings.namespace, stop_event=stop_event)
    if role == "responder":
        tag = os.environ.get("TAG", "")
        if not tag:
            print("[probe] TAG is required for ROLE=responder")
            return 2
        res = probe.run_responder(tag, service)
        ok = res.outcome is ProbeOutcome.ECHOED
    else:
        info = probe.get_service_probe_info(service)
        print(f"[probe] service={service} status={info.status} type={info.service_type} port={info.port}")
        res = probe.run_initiator(service)
        ok = res.outcome is ProbeOutcome.SUCCEEDED

    print(f"[probe] role={role} outcome={res.outcome.value} tag={res.tag} polls={res.polls}")
    if res.error is not None:
        print(f"[probe] error: {res.error}")
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
