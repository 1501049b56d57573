# webhooks.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Tuple

Version = Tuple[int, int]  # (major, minor) of the API server

KIND_WEBHOOK_CONFIG = "ValidatingWebhookConfiguration"

API_GROUP = "admissionregistration.k8s.io"
API_V1 = f"{API_GROUP}/v1"            # "new" generation, 1.16+, required from 1.22
API_V1BETA1 = f"{API_GROUP}/v1beta1"  # "legacy" generation, gone in 1.22

GEN_NEW = "new"
GEN_LEGACY = "legacy"

# Configuration objects
ADMISSION_CONFIG_NAME = "admgate-validating-admission-webhook"
CRD_CONFIG_NAME = "admgate-validating-crd-webhook"

# Webhooks (rules) inside those objects
VALIDATE_WEBHOOK = "validate.admgate.svc"
CRD_WEBHOOK = "crd.admgate.svc"
STATUS_WEBHOOK = "status.admgate.svc"

URI_PREFIX = "/v1"
URI_VALIDATE = f"{URI_PREFIX}/validate"
URI_CRD = f"{URI_PREFIX}/crd"
URI_STATUS = f"{URI_PREFIX}/status"

MODE_URL = "url"
MODE_SERVICE = "service"

OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"

SIDE_EFFECT_NONE = "None"
SIDE_EFFECT_NONE_ON_DRY_RUN = "NoneOnDryRun"
SIDE_EFFECT_SOME = "Some"

FAIL = "Fail"
IGNORE = "Ignore"

# The only AdmissionReview wire version the gate speaks
REVIEW_VERSION = "v1beta1"
RULE_API_VERSIONS = ["v1", "v1beta1", "v1beta2"]

# Namespace label keys used in namespaceSelectors
NS_KEY_SKIP = "admgate.io/skip"
NS_KEY_STATUS = "admgate.io/status"
NS_KEY_CONTROL_PLANE = "control-plane"

OP_EXISTS = "Exists"
OP_NOT_EXIST = "DoesNotExist"

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
SERVICE_TYPE_NODE_PORT = "NodePort"


@dataclass(frozen=True)
class ClientConfig:
    mode: str  # MODE_URL or MODE_SERVICE
    service_name: str
    path: str
    port: int = 443


@dataclass(frozen=True)
class RuleSpec:
    name: str
    client_config: ClientConfig
    failure_policy: str = IGNORE
    timeout_seconds: int = 3


@dataclass(frozen=True)
class GateSpec:
    name: str
    rules: List[RuleSpec] = field(default_factory=list)

    def with_port(self, service_name: str, port: int) -> "GateSpec":
        """Copy with every url-mode rule for service_name pointed at port."""
        rules = []
        for r in self.rules:
            cc = r.client_config
            if cc.mode == MODE_URL and cc.service_name == service_name:
                r = replace(r, client_config=replace(cc, port=int(port)))
            rules.append(r)
        return replace(self, rules=rules)


def at_least(version: Version, wanted: Version) -> bool:
    return tuple(version) >= tuple(wanted)


def generation_for_server(version: Version) -> str:
    return GEN_NEW if at_least(version, (1, 22)) else GEN_LEGACY


def api_version_for_server(version: Version) -> str:
    return API_V1 if generation_for_server(version) == GEN_NEW else API_V1BETA1


def service_url(service_name: str, namespace: str, port: int, path: str) -> str:
    return f"https://{service_name}.{namespace}.svc:{port}{path}"
