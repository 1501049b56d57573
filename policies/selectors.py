# policies/selectors.py
from __future__ import annotations

from typing import Dict, Iterable, Optional

from policies.rules import effective_failure_policy, rules_for, webhook_setting
from webhooks import Version, at_least


def selector_supported(version: Version) -> bool:
    """namespaceSelector (and rule scope) exist from K8s 1.14."""
    return at_least(version, (1, 14))


def expected_selector(name: str) -> Optional[dict]:
    s = webhook_setting(name)
    if s.ns_selector_key and s.ns_selector_op:
        return {"matchExpressions": [{"key": s.ns_selector_key, "operator": s.ns_selector_op}]}
    return None


def _selector_shape(selector: Optional[dict]) -> tuple:
    selector = selector or {}
    labels = selector.get("matchLabels", {}) or {}
    exprs = []
    for expr in selector.get("matchExpressions", []) or []:
        vals = tuple(sorted(expr.get("values", []) or []))
        exprs.append((expr.get("key"), expr.get("operator"), vals))
    return tuple(sorted(labels.items())), tuple(sorted(exprs))


def _rules_shape(rules: Iterable[dict]) -> list:
    # apiVersions/scope get defaulted by some servers; compare what we own
    shape = []
    for r in rules or []:
        shape.append((
            tuple(sorted(r.get("operations", []) or [])),
            tuple(sorted(r.get("apiGroups", []) or [])),
            tuple(sorted(r.get("resources", []) or [])),
        ))
    return sorted(shape)


def webhook_configured(name: str, failure_policy: str, webhook, ns_selector_supported: bool) -> bool:
    """Does a normalized webhook carry the failure policy, rules and namespaceSelector we would write?"""
    if webhook.failure_policy != effective_failure_policy(name, failure_policy):
        return False
    if _rules_shape(webhook.rules) != _rules_shape(rules_for(name)):
        return False
    if ns_selector_supported:
        if _selector_shape(webhook.namespace_selector) != _selector_shape(expected_selector(name)):
            return False
    return True


def selector_matches_labels(selector: Optional[dict], labels: Dict[str, str]) -> bool:
    """K8s label selector evaluation (matchLabels + In/NotIn/Exists/DoesNotExist).

    An empty or missing selector selects everything, as the API server treats it.
    """
    selector = selector or {}
    labels = labels or {}
    for k, v in (selector.get("matchLabels", {}) or {}).items():
        if labels.get(k) != v:
            return False

    for expr in selector.get("matchExpressions", []) or []:
        key = expr.get("key")
        op = expr.get("operator")
        vals = expr.get("values", []) or []
        if op == "In":
            if labels.get(key) not in vals:
                return False
        elif op == "NotIn":
            if key in labels and labels.get(key) in vals:
                return False
        elif op == "Exists":
            if key not in labels:
                return False
        elif op == "DoesNotExist":
            if key in labels:
                return False
        else:
            # Unknown operator -> be safe: treat as non-match
            return False

    return True
