# gate.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from policies.rules import WEBHOOK_SETTINGS
from webhooks import FAIL, IGNORE, MODE_SERVICE, MODE_URL, GateSpec


@dataclass
class GateResult:
    ok: bool
    errors: List[str]
    warnings: List[str]


def validate_gate_spec(spec: GateSpec) -> GateResult:
    """Refuse to reconcile a spec the API server would reject or we cannot build.

    This is intentionally conservative; it catches the usual configuration
    slips before they turn into a write the server bounces on every loop:
    - unknown or duplicated webhook names
    - client mode other than url/service, paths without a leading '/'
    - timeouts outside what the API server accepts (1-30s)
    """

    errors: List[str] = []
    warnings: List[str] = []

    if not spec.name:
        errors.append("webhook configuration has no name")
    if not spec.rules:
        errors.append(f"{spec.name}: no webhooks declared")

    seen = set()
    for rule in spec.rules:
        if rule.name in seen:
            errors.append(f"{spec.name}: webhook {rule.name} declared twice")
        seen.add(rule.name)

        setting = WEBHOOK_SETTINGS.get(rule.name)
        if setting is None:
            errors.append(f"{spec.name}: unknown webhook {rule.name}")

        cc = rule.client_config
        if cc.mode not in (MODE_URL, MODE_SERVICE):
            errors.append(f"{rule.name}: client mode {cc.mode!r} is neither url nor service")
        if not cc.service_name:
            errors.append(f"{rule.name}: no service name")
        if not cc.path.startswith("/"):
            errors.append(f"{rule.name}: path {cc.path!r} must start with '/'")
        if cc.mode == MODE_URL:
            warnings.append(f"{rule.name}: url mode, port {cc.port} will be replaced by the discovered service port")

        if not 1 <= int(rule.timeout_seconds) <= 30:
            errors.append(f"{rule.name}: timeoutSeconds {rule.timeout_seconds} outside 1..30")

        if rule.failure_policy not in (IGNORE, FAIL):
            errors.append(f"{rule.name}: failurePolicy {rule.failure_policy!r} is neither Ignore nor Fail")
        elif setting and setting.forced_failure_policy and setting.forced_failure_policy != rule.failure_policy:
            warnings.append(
                f"{rule.name}: failurePolicy {rule.failure_policy} overridden to {setting.forced_failure_policy}"
            )

    ok = len(errors) == 0
    return GateResult(ok=ok, errors=errors, warnings=warnings)
