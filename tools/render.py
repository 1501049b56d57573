#!/usr/bin/env python3
"""tools/render.py

Render the ValidatingWebhookConfigurations the controller would register, as
multi-document YAML.

Why this exists:
- The objects are built per API server version (v1 vs v1beta1, sideEffects,
  namespaceSelector availability); it helps to see exactly what gets sent.

Usage examples:
  K8S_VERSION=1.21 CA_BUNDLE_PATH=/tmp/ca.crt python3 tools/render.py > /tmp/vwc.yaml
  K8S_VERSION=1.29 WEBHOOK_CLIENT_MODE=url WEBHOOK_PORT=30443 python3 tools/render.py | head

Notes:
- This does NOT talk to the cluster. For validation, pair it with:
  kubectl apply --dry-run=server -f -
"""

from __future__ import annotations

import os
import sys

import yaml

# Allow executing from tools/ without installing as a package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cabundle import CABundleRegistry  # noqa: E402
from config import Settings, desired_gate_specs  # noqa: E402
from errors import NotReady  # noqa: E402
from k8s import parse_server_version  # noqa: E402
from reconcile import ConfigReconciler  # noqa: E402
from webhooks import MODE_URL  # noqa: E402


def main() -> int:
    settings = Settings.from_env()
    major, _, minor = os.environ.get("K8S_VERSION", "1.22").partition(".")
    version = parse_server_version(major, minor)
    port = int(os.environ.get("WEBHOOK_PORT", "443"))

    bundles = CABundleRegistry()
    ca = b""
    if os.path.exists(settings.ca_bundle_path):
        with open(settings.ca_bundle_path, "rb") as f:
            ca = f.read()
    for svc in settings.services:
        # placeholder keeps the output renderable without real certs
        bundles.set_bundle(svc, ca or b"<ca-bundle>")

    reconciler = ConfigReconciler(None, bundles, settings.namespace, server_version=lambda: version)

    try:
        for spec in desired_gate_specs(settings):
            if settings.client_mode == MODE_URL:
                for svc in settings.services:
                    spec = spec.with_port(svc, port)
            yaml.safe_dump(reconciler.desired_object(spec), sys.stdout, sort_keys=False)
            sys.stdout.write("---\n")
    except NotReady as e:
        print(f"[render] {e}", file=sys.stderr)
        return 2
    except BrokenPipeError:
        # Common when piping to `head`; exit cleanly
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
