from __future__ import annotations

import base64

import pytest

from errors import TypeMismatch
from schema import (
    NormalizedWebhook,
    build_config,
    build_webhook,
    decode_ca_bundle,
    generation_of,
    normalize_config,
    review_version_ok,
)
from webhooks import (
    API_V1,
    API_V1BETA1,
    GEN_LEGACY,
    GEN_NEW,
    MODE_URL,
    STATUS_WEBHOOK,
    VALIDATE_WEBHOOK,
    ClientConfig,
    RuleSpec,
)


def _legacy_obj() -> dict:
    return {
        "apiVersion": API_V1BETA1,
        "kind": "ValidatingWebhookConfiguration",
        "metadata": {"name": "cfg", "resourceVersion": "42"},
        "webhooks": [
            {
                "name": VALIDATE_WEBHOOK,
                "clientConfig": {
                    "service": {"namespace": "admgate", "name": "svc", "path": "/v1/validate"},
                    "caBundle": base64.b64encode(b"pem").decode(),
                },
                "rules": [{"operations": ["CREATE"], "apiGroups": [""], "resources": ["pods"]}],
                "failurePolicy": "Ignore",
            }
        ],
    }


def _wh(review_versions) -> NormalizedWebhook:
    return NormalizedWebhook(
        name="x",
        review_versions=review_versions,
        url=None,
        service=None,
        ca_bundle=b"",
        rules=[],
        failure_policy=None,
        namespace_selector=None,
        side_effects=None,
    )


def test_generation_of() -> None:
    assert generation_of({"apiVersion": API_V1}) == GEN_NEW
    assert generation_of({"apiVersion": API_V1BETA1}) == GEN_LEGACY
    with pytest.raises(TypeMismatch):
        generation_of({"apiVersion": "admissionregistration.k8s.io/v2"})
    with pytest.raises(TypeMismatch):
        generation_of({"apiVersion": API_V1, "kind": "MutatingWebhookConfiguration"})


def test_normalize_legacy_config() -> None:
    cfg = normalize_config(_legacy_obj())

    assert cfg.generation == GEN_LEGACY
    assert cfg.version_token == "42"
    wh = cfg.webhooks[0]
    assert wh.review_versions is None
    assert wh.ca_bundle == b"pem"
    assert wh.url is None
    assert (wh.service.namespace, wh.service.name, wh.service.path) == ("admgate", "svc", "/v1/validate")
    assert wh.side_effects is None


def test_bad_ca_bundle_is_a_type_mismatch() -> None:
    assert decode_ca_bundle(None) == b""
    with pytest.raises(TypeMismatch):
        decode_ca_bundle("not base64!!")


def test_review_versions() -> None:
    assert review_version_ok(GEN_LEGACY, _wh(None)) is True
    assert review_version_ok(GEN_NEW, _wh(None)) is False
    assert review_version_ok(GEN_NEW, _wh(["v1beta1"])) is True
    assert review_version_ok(GEN_NEW, _wh(["v1"])) is False
    assert review_version_ok(GEN_LEGACY, _wh(["v1", "v1beta1"])) is False


def test_build_webhook_url_mode() -> None:
    rule = RuleSpec(VALIDATE_WEBHOOK, ClientConfig(MODE_URL, "svc", "/v1/validate", port=8443), "Fail", 7)

    wh = build_webhook(rule, b"pem", "admgate", (1, 22), GEN_NEW)

    assert wh["clientConfig"] == {
        "caBundle": base64.b64encode(b"pem").decode(),
        "url": "https://svc.admgate.svc:8443/v1/validate",
    }
    assert wh["failurePolicy"] == "Fail"
    assert wh["timeoutSeconds"] == 7
    assert wh["sideEffects"] == "None"
    assert wh["admissionReviewVersions"] == ["v1beta1"]
    assert wh["matchPolicy"] == "Exact"
    assert wh["namespaceSelector"] == {
        "matchExpressions": [{"key": "admgate.io/skip", "operator": "DoesNotExist"}]
    }


def test_build_webhook_legacy_pre_selector_server() -> None:
    rule = RuleSpec(STATUS_WEBHOOK, ClientConfig("service", "svc", "/v1/status"), "Fail")

    wh = build_webhook(rule, b"pem", "admgate", (1, 11), GEN_LEGACY)

    assert wh["clientConfig"]["service"] == {"namespace": "admgate", "name": "svc", "path": "/v1/status"}
    assert wh["failurePolicy"] == "Ignore"
    for key in ("namespaceSelector", "timeoutSeconds", "sideEffects", "admissionReviewVersions"):
        assert key not in wh
    assert all("scope" not in r for r in wh["rules"])


def test_build_config_carries_version_token() -> None:
    assert "resourceVersion" not in build_config(GEN_NEW, "cfg", [])["metadata"]
    obj = build_config(GEN_LEGACY, "cfg", [], "7")
    assert obj["apiVersion"] == API_V1BETA1
    assert obj["metadata"] == {"name": "cfg", "resourceVersion": "7"}
