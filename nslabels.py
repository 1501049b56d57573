# nslabels.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from typing import Dict, Iterable, List, Tuple

from errors import AdmGateError, TypeMismatch
from k8s import KIND_NAMESPACE
from webhooks import NS_KEY_CONTROL_PLANE, NS_KEY_SKIP, NS_KEY_STATUS, OP_NOT_EXIST


class Presence(Enum):
    MUST_EXIST = "must-exist"
    MUST_NOT_EXIST = "must-not-exist"
    DONT_CARE = "dont-care"


@dataclass(frozen=True)
class AllowedNamespaceSets:
    exact: frozenset = frozenset()
    wildcard: frozenset = frozenset()
    # namespaces allowed by the built-in critical rules only
    default_critical: frozenset = frozenset()

    @classmethod
    def from_patterns(cls, patterns: Iterable[str], default_critical: Iterable[str] = ()) -> "AllowedNamespaceSets":
        exact, wild = set(), set()
        for p in patterns or []:
            p = (p or "").strip()
            if not p:
                continue
            (wild if "*" in p else exact).add(p)
        crit = {c.strip() for c in default_critical or [] if c and c.strip()}
        return cls(frozenset(exact), frozenset(wild), frozenset(crit))

    def allows(self, namespace: str) -> bool:
        if namespace in self.exact:
            return True
        return any(fnmatchcase(namespace, pat) for pat in self.wildcard)


def drifted(desired: Dict[str, Presence], labels: Dict[str, str]) -> bool:
    for key, want in desired.items():
        exists = key in labels
        if (want is Presence.MUST_EXIST and not exists) or (want is Presence.MUST_NOT_EXIST and exists):
            return True
    return False


class NamespaceLabelEnforcer:
    """Keeps the skip/status/control-plane labels on every namespace in line with policy.

    The webhooks' namespaceSelectors key off these labels, so a namespace that
    is allowed by policy gets the skip label and the gate's own namespace gets
    the status label while admission control is enabled.
    """

    def __init__(
        self,
        store,
        gate_namespace: str,
        sets: AllowedNamespaceSets = AllowedNamespaceSets(),
        selector_value: str = "enabled",
        control_plane_op: str = OP_NOT_EXIST,
    ):
        self.store = store
        self.gate_namespace = gate_namespace
        self.selector_value = selector_value
        self.control_plane_op = control_plane_op
        self._sets = sets

    @property
    def allowed_sets(self) -> AllowedNamespaceSets:
        return self._sets

    def desired_labels(self, enabled: bool, name: str) -> Dict[str, Presence]:
        sets = self._sets
        desired = {
            NS_KEY_SKIP: Presence.MUST_NOT_EXIST,
            NS_KEY_STATUS: Presence.MUST_NOT_EXIST,
            NS_KEY_CONTROL_PLANE: Presence.DONT_CARE,
        }
        if not enabled:
            return desired

        if self.control_plane_op == OP_NOT_EXIST:
            if name in sets.default_critical:
                desired[NS_KEY_CONTROL_PLANE] = Presence.DONT_CARE
            else:
                desired[NS_KEY_CONTROL_PLANE] = Presence.MUST_NOT_EXIST

        if sets.allows(name):
            desired[NS_KEY_SKIP] = Presence.MUST_EXIST

        # status label stays on our own namespace for as long as admission control is on
        if name == self.gate_namespace:
            desired[NS_KEY_STATUS] = Presence.MUST_EXIST
        return desired

    def verify_namespace(self, enabled: bool, name: str, labels: Dict[str, str]) -> bool:
        """Correct the namespace's labels if they drifted. Returns True if a write was made.

        Store errors (including Conflict) propagate to the caller.
        """
        desired = self.desired_labels(enabled, name)
        if not drifted(desired, labels or {}):
            return False
        return self._correct_namespace(name, desired)

    def _correct_namespace(self, name: str, desired: Dict[str, Presence]) -> bool:
        # decide against a fresh read, never the caller's snapshot
        ns = self.store.get(KIND_NAMESPACE, "", name)
        meta = ns.get("metadata")
        if not meta:
            raise TypeMismatch(f"namespace {name} has no metadata")

        labels = dict(meta.get("labels", {}) or {})
        added, removed = [], []
        for key, want in desired.items():
            if want is Presence.MUST_EXIST and key not in labels:
                labels[key] = self.selector_value
                added.append(key)
            elif want is Presence.MUST_NOT_EXIST and key in labels:
                del labels[key]
                removed.append(key)
        if not added and not removed:
            return False

        body = dict(ns)
        body["metadata"] = {**meta, "labels": labels}
        self.store.update(KIND_NAMESPACE, body)
        print(f"[nslabels] namespace={name} added={sorted(added)} removed={sorted(removed)}")
        return True

    def _scan_all(self, enabled: bool) -> List[Tuple[str, AdmGateError]]:
        failures: List[Tuple[str, AdmGateError]] = []
        for ns in self.store.list(KIND_NAMESPACE):
            meta = ns.get("metadata", {}) or {}
            name = meta.get("name")
            if not name:
                continue
            try:
                self.verify_namespace(enabled, name, meta.get("labels", {}) or {})
            except AdmGateError as e:
                print(f"[nslabels] namespace={name} enabled={enabled} error: {e}")
                failures.append((name, e))
        return failures

    def init_namespaces(self, enabled: bool) -> List[Tuple[str, AdmGateError]]:
        """Startup pass over every namespace."""
        return self._scan_all(enabled)

    def on_cache_refresh(self, sets: AllowedNamespaceSets) -> None:
        """Every replica: swap in the new allowed sets, no writes."""
        self._sets = sets

    def on_leader_policy_change(self, enabled: bool) -> List[Tuple[str, AdmGateError]]:
        """Leader only: re-check every namespace against current policy."""
        return self._scan_all(enabled)

    def refresh_allowed_sets(
        self, sets: AllowedNamespaceSets, is_leader: bool, enabled: bool
    ) -> List[Tuple[str, AdmGateError]]:
        self.on_cache_refresh(sets)
        if is_leader:
            return self.on_leader_policy_change(enabled)
        return []
