# schema.py
"""Both generations of ValidatingWebhookConfiguration, and the one shape we compare.

The API server hands back either an ``admissionregistration.k8s.io/v1`` or a
``.../v1beta1`` object depending on its version. Nothing outside this module
looks at the raw variants: ``normalize_config`` projects either one onto
``NormalizedConfig`` and ``build_config`` goes the other way for writes.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import List, Optional

from errors import TypeMismatch
from policies.rules import effective_failure_policy, expected_side_effects, rules_for
from policies.selectors import expected_selector, selector_supported
from webhooks import (
    API_V1,
    API_V1BETA1,
    GEN_LEGACY,
    GEN_NEW,
    KIND_WEBHOOK_CONFIG,
    MODE_URL,
    REVIEW_VERSION,
    RuleSpec,
    Version,
    service_url,
)


@dataclass(frozen=True)
class ServiceRef:
    namespace: Optional[str]
    name: Optional[str]
    path: Optional[str]


@dataclass
class NormalizedWebhook:
    name: Optional[str]
    review_versions: Optional[List[str]]  # None when the field is absent
    url: Optional[str]
    service: Optional[ServiceRef]
    ca_bundle: bytes
    rules: List[dict]
    failure_policy: Optional[str]
    namespace_selector: Optional[dict]
    side_effects: Optional[str]


@dataclass
class NormalizedConfig:
    name: str
    generation: str
    version_token: str
    webhooks: List[NormalizedWebhook] = field(default_factory=list)


def generation_of(obj: dict) -> str:
    kind = obj.get("kind")
    if kind and kind != KIND_WEBHOOK_CONFIG:
        raise TypeMismatch(f"expected {KIND_WEBHOOK_CONFIG}, got {kind}")
    api_version = obj.get("apiVersion")
    if api_version == API_V1:
        return GEN_NEW
    if api_version == API_V1BETA1:
        return GEN_LEGACY
    raise TypeMismatch(f"unsupported apiVersion {api_version!r} for {KIND_WEBHOOK_CONFIG}")


def decode_ca_bundle(value) -> bytes:
    if not value:
        return b""
    if isinstance(value, bytes):
        return value
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TypeMismatch(f"caBundle is not base64: {e}") from e


def _normalize_webhook(wh: dict) -> NormalizedWebhook:
    cc = wh.get("clientConfig", {}) or {}
    svc = cc.get("service")
    service = None
    if svc is not None:
        service = ServiceRef(svc.get("namespace"), svc.get("name"), svc.get("path"))
    review = wh.get("admissionReviewVersions")
    return NormalizedWebhook(
        name=wh.get("name"),
        review_versions=list(review) if review is not None else None,
        url=cc.get("url"),
        service=service,
        ca_bundle=decode_ca_bundle(cc.get("caBundle")),
        rules=[dict(r) for r in wh.get("rules", []) or []],
        failure_policy=wh.get("failurePolicy"),
        namespace_selector=wh.get("namespaceSelector"),
        side_effects=wh.get("sideEffects"),
    )


def normalize_config(obj: dict) -> NormalizedConfig:
    generation = generation_of(obj)
    meta = obj.get("metadata", {}) or {}
    return NormalizedConfig(
        name=meta.get("name", ""),
        generation=generation,
        version_token=str(meta.get("resourceVersion") or ""),
        webhooks=[_normalize_webhook(wh) for wh in obj.get("webhooks", []) or []],
    )


def review_version_ok(generation: str, webhook: NormalizedWebhook) -> bool:
    """Only the v1beta1 AdmissionReview is spoken; v1beta1 objects may omit the field."""
    if webhook.review_versions is None:
        return generation == GEN_LEGACY
    return webhook.review_versions == [REVIEW_VERSION]


def build_webhook(rule: RuleSpec, ca_bundle: bytes, namespace: str, version: Version, generation: str) -> dict:
    name = rule.name
    cc = rule.client_config
    # scope, namespaceSelector and timeoutSeconds are 1.14+ on v1beta1
    ns_ok = generation == GEN_NEW or selector_supported(version)

    client_config: dict = {"caBundle": base64.b64encode(ca_bundle).decode("ascii")}
    if cc.mode == MODE_URL:
        client_config["url"] = service_url(cc.service_name, namespace, cc.port, cc.path)
    else:
        client_config["service"] = {"namespace": namespace, "name": cc.service_name, "path": cc.path}

    wh = {
        "name": name,
        "clientConfig": client_config,
        "rules": rules_for(name, include_scope=ns_ok),
        "failurePolicy": effective_failure_policy(name, rule.failure_policy),
    }
    if ns_ok:
        selector = expected_selector(name)
        if selector:
            wh["namespaceSelector"] = selector
        wh["timeoutSeconds"] = int(rule.timeout_seconds)
    side_effects = expected_side_effects(name, version, generation)
    if side_effects is not None:
        wh["sideEffects"] = side_effects
    if generation == GEN_NEW:
        wh["admissionReviewVersions"] = [REVIEW_VERSION]
        wh["matchPolicy"] = "Exact"
    return wh


def build_config(generation: str, name: str, webhooks: List[dict], version_token: str = "") -> dict:
    meta = {"name": name}
    if version_token:
        meta["resourceVersion"] = version_token
    return {
        "apiVersion": API_V1 if generation == GEN_NEW else API_V1BETA1,
        "kind": KIND_WEBHOOK_CONFIG,
        "metadata": meta,
        "webhooks": webhooks,
    }
