# reconcile.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional

from cabundle import CABundleRegistry
from errors import AdmGateError, NotFound, NotReady, ReconcileFailed, TypeMismatch, Unsupported
from policies.rules import expected_side_effects
from policies.selectors import selector_supported, webhook_configured
from schema import (
    NormalizedWebhook,
    build_config,
    build_webhook,
    normalize_config,
    review_version_ok,
)
from webhooks import (
    KIND_WEBHOOK_CONFIG,
    MODE_URL,
    OP_CREATE,
    OP_DELETE,
    OP_UPDATE,
    GateSpec,
    RuleSpec,
    Version,
    at_least,
    generation_for_server,
    service_url,
)

DEBUG = os.environ.get("ADMGATE_DEBUG", "0") == "1"

MAX_ATTEMPTS = 3


@dataclass
class ReadResult:
    found: bool
    matched: bool
    version_token: str = ""


@dataclass
class ReconcileResult:
    skipped: bool
    op: str = ""
    attempts: int = 0


class ReconcilePlan(dict):
    """A small, json-serializable planning object."""

    # kept as dict subclass for easy printing/JSON dumping


def in_desired_state(found: bool, matched: bool, enabled: bool) -> bool:
    return (not found and not enabled) or (found and matched and enabled)


def choose_op(found: bool, matched: bool, enabled: bool) -> str:
    if found and not enabled:
        return OP_DELETE
    if enabled and not found:
        return OP_CREATE
    if enabled and found and not matched:
        # someone changed our webhook config behind our back
        return OP_UPDATE
    return ""


class ConfigReconciler:
    """Drives a ValidatingWebhookConfiguration towards a GateSpec.

    The cluster object is never cached: each attempt starts from a fresh
    read, and updates carry the resourceVersion from that read.
    """

    def __init__(
        self,
        store,
        bundles: CABundleRegistry,
        namespace: str,
        server_version: Optional[Callable[[], Version]] = None,
        port_discovery: Optional[Callable[[str], object]] = None,
        selector_check: Callable[..., bool] = webhook_configured,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.store = store
        self.bundles = bundles
        self.namespace = namespace
        self.server_version = server_version or store.server_version
        self.port_discovery = port_discovery
        self.selector_check = selector_check
        self.max_attempts = max_attempts

    # ── read ────────────────────────────────────

    def read(self, spec: GateSpec) -> ReadResult:
        try:
            obj = self.store.get(KIND_WEBHOOK_CONFIG, "", spec.name)
        except NotFound:
            return ReadResult(found=False, matched=False)

        version = self.server_version()
        try:
            cfg = normalize_config(obj)
        except TypeMismatch as e:
            print(f"[reconcile] name={spec.name} server={version[0]}.{version[1]} {e}")
            raise

        if len(cfg.webhooks) != len(spec.rules):
            return ReadResult(found=True, matched=False, version_token=cfg.version_token)

        ns_supported = selector_supported(version)
        desired = {r.name: r for r in spec.rules}
        for wh in cfg.webhooks:
            rule = desired.get(wh.name)
            if rule is None or not self._webhook_matches(cfg.generation, version, rule, wh, ns_supported):
                return ReadResult(found=True, matched=False, version_token=cfg.version_token)
        return ReadResult(found=True, matched=True, version_token=cfg.version_token)

    def _webhook_matches(
        self, generation: str, version: Version, rule: RuleSpec, wh: NormalizedWebhook, ns_supported: bool
    ) -> bool:
        if not review_version_ok(generation, wh):
            return False

        cc = rule.client_config
        url_mode = cc.mode == MODE_URL
        if url_mode:
            mode_ok = wh.url is not None and wh.service is None
        else:
            mode_ok = wh.service is not None and wh.url is None
        if not mode_ok:
            print(f"[reconcile] webhook={rule.name} client mode differs (want {cc.mode})")
            return False

        # sideEffects means nothing before 1.12
        if at_least(version, (1, 12)):
            if wh.side_effects != expected_side_effects(rule.name, version, generation):
                return False

        # no bundle yet: don't call it a mismatch before the first cert sync
        bundle = self.bundles.get_bundle(cc.service_name)
        if bundle and bundle != wh.ca_bundle:
            return False

        if url_mode:
            expected_url = service_url(cc.service_name, self.namespace, cc.port, cc.path)
            if wh.url.casefold() != expected_url.casefold():
                return False
        else:
            ref = wh.service
            if ref.namespace != self.namespace or ref.name != cc.service_name:
                return False
            if ref.path is None or ref.path.casefold() != cc.path.casefold():
                return False

        # failure policy and rules always; the selector only where ns_supported
        return self.selector_check(rule.name, rule.failure_policy, wh, ns_supported)

    # ── write ───────────────────────────────────

    def apply(self, op: str, spec: GateSpec, version_token: str = "") -> None:
        if op == OP_DELETE:
            # identity only; already gone is as good as deleted
            generation = generation_for_server(self.server_version())
            try:
                self.store.delete(KIND_WEBHOOK_CONFIG, build_config(generation, spec.name, []))
            except NotFound:
                if DEBUG:
                    print(f"[reconcile] name={spec.name} already absent")
            return

        if op == OP_CREATE:
            self.store.add(KIND_WEBHOOK_CONFIG, self.desired_object(spec))
        elif op == OP_UPDATE:
            self.store.update(KIND_WEBHOOK_CONFIG, self.desired_object(spec, version_token))
        else:
            raise Unsupported(f"unsupported k8s resource operation {op!r}")

    def desired_object(self, spec: GateSpec, version_token: str = "") -> dict:
        """The object create/update would submit. Raises NotReady while any bundle is missing."""
        version = self.server_version()
        generation = generation_for_server(version)
        webhooks = []
        for rule in spec.rules:
            svc = rule.client_config.service_name
            bundle = self.bundles.get_bundle(svc)
            if not bundle:
                raise NotReady(f"empty caBundle for service {svc} (webhook {rule.name})")
            webhooks.append(build_webhook(rule, bundle, self.namespace, version, generation))
        return build_config(generation, spec.name, webhooks, version_token)

    # ── converge ────────────────────────────────

    def resolve_ports(self, spec: GateSpec) -> GateSpec:
        if self.port_discovery is None:
            return spec
        services = sorted({r.client_config.service_name for r in spec.rules if r.client_config.mode == MODE_URL})
        for svc in services:
            info = self.port_discovery(svc)
            spec = spec.with_port(svc, info.port)
        return spec

    def reconcile(self, spec: GateSpec, enabled: bool) -> ReconcileResult:
        """Converge in at most max_attempts read/apply rounds.

        NotReady and Unsupported are configuration problems and are raised
        straight away; anything else is retried and finally reported as
        ReconcileFailed carrying the last error.
        """
        if enabled:
            spec = self.resolve_ports(spec)

        op = ""
        last_err: Optional[AdmGateError] = None
        for attempt in range(1, self.max_attempts + 1):
            op = ""
            try:
                state = self.read(spec)
            except AdmGateError as e:
                print(f"[reconcile] name={spec.name} attempt={attempt} read failed: {e}")
                last_err = e
                continue

            if in_desired_state(state.found, state.matched, enabled):
                if DEBUG:
                    print(f"[reconcile] name={spec.name} enabled={enabled} found={state.found} no change")
                return ReconcileResult(skipped=True, attempts=attempt)

            op = choose_op(state.found, state.matched, enabled)
            try:
                self.apply(op, spec, state.version_token)
            except (NotReady, Unsupported) as e:
                print(f"[reconcile] name={spec.name} op={op} refused: {e}")
                raise
            except AdmGateError as e:
                print(f"[reconcile] name={spec.name} op={op} attempt={attempt} failed: {e}")
                last_err = e
                continue

            print(f"[reconcile] configured name={spec.name} op={op} enabled={enabled}")
            return ReconcileResult(skipped=False, op=op, attempts=attempt)

        print(f"[reconcile] name={spec.name} op={op} enabled={enabled} giving up: {last_err}")
        raise ReconcileFailed(spec.name, op, last_err, self.max_attempts)

    def unregister(self, name: str) -> None:
        self.apply(OP_DELETE, GateSpec(name=name))
        print(f"[reconcile] unregistered name={name}")

    def plan(self, spec: GateSpec, enabled: bool) -> ReconcilePlan:
        """Compute what reconcile() *would* do, without creating/updating/deleting anything."""
        if enabled:
            spec = self.resolve_ports(spec)
        state = self.read(spec)
        op = "" if in_desired_state(state.found, state.matched, enabled) else choose_op(
            state.found, state.matched, enabled
        )
        return ReconcilePlan(
            name=spec.name,
            enabled=enabled,
            found=state.found,
            matched=state.matched,
            resource_version=state.version_token,
            op=op or "none",
        )


def print_plan(plan: ReconcilePlan) -> None:
    print(
        f"[plan] name={plan.get('name')} enabled={plan.get('enabled')} found={plan.get('found')} "
        f"matched={plan.get('matched')} op={plan.get('op')}"
    )
