# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from webhooks import (
    ADMISSION_CONFIG_NAME,
    CRD_CONFIG_NAME,
    CRD_WEBHOOK,
    IGNORE,
    MODE_SERVICE,
    OP_NOT_EXIST,
    STATUS_WEBHOOK,
    URI_CRD,
    URI_STATUS,
    URI_VALIDATE,
    VALIDATE_WEBHOOK,
    ClientConfig,
    GateSpec,
    RuleSpec,
)


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    namespace: str = "admgate"
    loop_seconds: int = 5
    admission_service: str = "admgate-svc-admission-webhook"
    crd_service: str = "admgate-svc-crd-webhook"
    client_mode: str = MODE_SERVICE
    failure_policy: str = IGNORE
    timeout_seconds: int = 3
    ca_bundle_path: str = "/etc/admgate/certs/ca.crt"
    allowed_namespaces: List[str] = field(default_factory=list)
    default_allowed_namespaces: List[str] = field(default_factory=lambda: ["kube-system"])
    ns_selector_value: str = "enabled"
    control_plane_selector_op: str = OP_NOT_EXIST
    leader: bool = True
    probe: bool = True

    @classmethod
    def from_env(cls, env: Mapping[str, str] = os.environ) -> "Settings":
        d = cls()
        default_allowed = env.get("DEFAULT_ALLOWED_NAMESPACES")
        return cls(
            namespace=env.get("NAMESPACE", d.namespace),
            loop_seconds=int(env.get("LOOP_SECONDS", str(d.loop_seconds))),
            admission_service=env.get("ADMISSION_SERVICE", d.admission_service),
            crd_service=env.get("CRD_SERVICE", d.crd_service),
            client_mode=env.get("WEBHOOK_CLIENT_MODE", d.client_mode),
            failure_policy=env.get("WEBHOOK_FAILURE_POLICY", d.failure_policy),
            timeout_seconds=int(env.get("WEBHOOK_TIMEOUT_SECONDS", str(d.timeout_seconds))),
            ca_bundle_path=env.get("CA_BUNDLE_PATH", d.ca_bundle_path),
            allowed_namespaces=_split(env.get("ALLOWED_NAMESPACES")),
            default_allowed_namespaces=(
                _split(default_allowed) if default_allowed is not None else list(d.default_allowed_namespaces)
            ),
            ns_selector_value=env.get("NS_SELECTOR_VALUE", d.ns_selector_value),
            control_plane_selector_op=env.get("CONTROL_PLANE_SELECTOR_OP", d.control_plane_selector_op),
            leader=env.get("CONTROLLER_LEADER", "1") == "1",
            probe=env.get("CONTROLLER_PROBE", "1") == "1",
        )

    @property
    def services(self) -> List[str]:
        return [self.admission_service, self.crd_service]


def desired_gate_specs(settings: Settings) -> List[GateSpec]:
    """
    Webhook configurations the controller keeps registered.
    The admission config carries the workload webhook plus the status webhook
    the connectivity probe rides on; CRDs get their own config.
    """

    def _rule(name: str, service: str, path: str, failure_policy: str) -> RuleSpec:
        return RuleSpec(
            name=name,
            client_config=ClientConfig(mode=settings.client_mode, service_name=service, path=path),
            failure_policy=failure_policy,
            timeout_seconds=settings.timeout_seconds,
        )

    admission = GateSpec(
        name=ADMISSION_CONFIG_NAME,
        rules=[
            _rule(VALIDATE_WEBHOOK, settings.admission_service, URI_VALIDATE, settings.failure_policy),
            _rule(STATUS_WEBHOOK, settings.admission_service, URI_STATUS, IGNORE),
        ],
    )
    crd = GateSpec(
        name=CRD_CONFIG_NAME,
        rules=[_rule(CRD_WEBHOOK, settings.crd_service, URI_CRD, IGNORE)],
    )
    return [admission, crd]
