from __future__ import annotations

from config import Settings, desired_gate_specs
from mode import ALLOWED_ANNOTATION, ANNOTATION, admission_enabled, allowed_namespace_patterns
from webhooks import (
    ADMISSION_CONFIG_NAME,
    CRD_CONFIG_NAME,
    CRD_WEBHOOK,
    FAIL,
    IGNORE,
    MODE_URL,
    STATUS_WEBHOOK,
    VALIDATE_WEBHOOK,
)


def _ns(annotations: dict) -> dict:
    return {"metadata": {"name": "admgate", "annotations": annotations}}


def test_settings_defaults() -> None:
    s = Settings.from_env({})
    assert s == Settings()
    assert s.default_allowed_namespaces == ["kube-system"]
    assert s.services == ["admgate-svc-admission-webhook", "admgate-svc-crd-webhook"]


def test_settings_from_env() -> None:
    s = Settings.from_env({
        "NAMESPACE": "gate",
        "LOOP_SECONDS": "30",
        "WEBHOOK_CLIENT_MODE": "url",
        "WEBHOOK_FAILURE_POLICY": "Fail",
        "ALLOWED_NAMESPACES": "team-a, dev-*,,",
        "DEFAULT_ALLOWED_NAMESPACES": "",
        "CONTROLLER_LEADER": "0",
    })
    assert s.namespace == "gate"
    assert s.loop_seconds == 30
    assert s.allowed_namespaces == ["team-a", "dev-*"]
    assert s.default_allowed_namespaces == []
    assert s.leader is False
    assert s.probe is True


def test_desired_gate_specs() -> None:
    admission, crd = desired_gate_specs(Settings(client_mode=MODE_URL, failure_policy=FAIL, timeout_seconds=9))

    assert admission.name == ADMISSION_CONFIG_NAME
    assert [r.name for r in admission.rules] == [VALIDATE_WEBHOOK, STATUS_WEBHOOK]
    assert admission.rules[0].failure_policy == FAIL
    assert admission.rules[1].failure_policy == IGNORE
    assert {r.client_config.service_name for r in admission.rules} == {"admgate-svc-admission-webhook"}

    assert crd.name == CRD_CONFIG_NAME
    assert [r.name for r in crd.rules] == [CRD_WEBHOOK]
    assert crd.rules[0].client_config.mode == MODE_URL
    assert crd.rules[0].timeout_seconds == 9


def test_admission_enabled_env_wins(monkeypatch) -> None:
    monkeypatch.setenv("ADMISSION_CONTROL", "disable")
    assert admission_enabled(_ns({ANNOTATION: "enable"})) is False
    monkeypatch.setenv("ADMISSION_CONTROL", "Enabled")
    assert admission_enabled() is True


def test_admission_enabled_annotation_then_default(monkeypatch) -> None:
    monkeypatch.delenv("ADMISSION_CONTROL", raising=False)
    assert admission_enabled(_ns({ANNOTATION: "true"})) is True
    assert admission_enabled(_ns({ANNOTATION: "maybe"})) is False
    assert admission_enabled(None) is False


def test_allowed_namespace_patterns_merges_annotation() -> None:
    ns = _ns({ALLOWED_ANNOTATION: "team-b, team-a ,"})
    assert allowed_namespace_patterns(ns, ["team-a"]) == ["team-a", "team-b"]
    assert allowed_namespace_patterns(None) == []
