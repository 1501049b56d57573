# policies/rules.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from errors import Unsupported
from webhooks import (
    CRD_WEBHOOK,
    GEN_NEW,
    IGNORE,
    NS_KEY_SKIP,
    NS_KEY_STATUS,
    OP_EXISTS,
    OP_NOT_EXIST,
    RULE_API_VERSIONS,
    SIDE_EFFECT_NONE,
    SIDE_EFFECT_NONE_ON_DRY_RUN,
    SIDE_EFFECT_SOME,
    STATUS_WEBHOOK,
    VALIDATE_WEBHOOK,
    Version,
    at_least,
)


@dataclass(frozen=True)
class RuleSetting:
    operations: tuple
    api_groups: tuple
    resources: tuple
    scope: str = "*"


@dataclass(frozen=True)
class WebhookSetting:
    rules: tuple
    ns_selector_key: Optional[str] = None
    ns_selector_op: Optional[str] = None
    # None: honour whatever the gate spec asks for
    forced_failure_policy: Optional[str] = None
    # webhook on our own structured resources (CRDs); different sideEffects
    structured: bool = False


# Workload objects the generic webhook reviews.
ADMISSION_RULES = (
    RuleSetting(
        operations=("CREATE", "UPDATE"),
        api_groups=("", "apps", "batch"),
        resources=(
            "pods",
            "deployments",
            "daemonsets",
            "replicasets",
            "statefulsets",
            "replicationcontrollers",
            "jobs",
            "cronjobs",
        ),
    ),
    RuleSetting(
        operations=("DELETE",),
        api_groups=("", "apps"),
        resources=("pods", "deployments", "daemonsets", "statefulsets"),
        scope="Namespaced",
    ),
)

# The controller's own security-rule CRDs.
CRD_RULES = (
    RuleSetting(
        operations=("CREATE", "UPDATE", "DELETE"),
        api_groups=("admgate.io",),
        resources=("admissionrules", "securityrules", "clusteradmissionrules"),
    ),
)

# Updates to the webhook Services themselves; this is what carries the
# tag/echo connectivity probe to the live gate.
STATUS_RULES = (
    RuleSetting(
        operations=("UPDATE",),
        api_groups=("",),
        resources=("services",),
        scope="Namespaced",
    ),
)

WEBHOOK_SETTINGS: Dict[str, WebhookSetting] = {
    VALIDATE_WEBHOOK: WebhookSetting(
        rules=ADMISSION_RULES,
        ns_selector_key=NS_KEY_SKIP,
        ns_selector_op=OP_NOT_EXIST,
    ),
    CRD_WEBHOOK: WebhookSetting(
        rules=CRD_RULES,
        forced_failure_policy=IGNORE,
        structured=True,
    ),
    STATUS_WEBHOOK: WebhookSetting(
        rules=STATUS_RULES,
        ns_selector_key=NS_KEY_STATUS,
        ns_selector_op=OP_EXISTS,
        forced_failure_policy=IGNORE,
    ),
}


def webhook_setting(name: str) -> WebhookSetting:
    try:
        return WEBHOOK_SETTINGS[name]
    except KeyError:
        raise Unsupported(f"unknown webhook {name!r}") from None


def effective_failure_policy(name: str, requested: str) -> str:
    return webhook_setting(name).forced_failure_policy or requested


def rules_for(name: str, include_scope: bool = True) -> List[dict]:
    """Operation/resource rule list for a webhook, lists sorted for stable diffs."""
    out: List[dict] = []
    for rs in webhook_setting(name).rules:
        rule = {
            "apiGroups": list(rs.api_groups),
            "apiVersions": list(RULE_API_VERSIONS),
            "resources": sorted(rs.resources),
        }
        if include_scope:
            rule["scope"] = rs.scope
        out.append({"operations": sorted(rs.operations), **rule})
    return out


def expected_side_effects(name: str, version: Version, generation: str) -> Optional[str]:
    """sideEffects value a webhook should carry, or None if the server predates the field (<1.12)."""
    if not at_least(version, (1, 12)):
        return None
    if not webhook_setting(name).structured:
        return SIDE_EFFECT_NONE
    if at_least(version, (1, 22)) or generation == GEN_NEW:
        # v1 only accepts None / NoneOnDryRun
        return SIDE_EFFECT_NONE_ON_DRY_RUN
    return SIDE_EFFECT_SOME
