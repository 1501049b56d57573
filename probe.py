# probe.py
"""Tag/echo round trip proving the live gate, not just its registration, works.

The initiator writes a fresh tag label on the webhook Service. That UPDATE is
reviewed by the status webhook, and the gate instance that receives it runs
the responder, which copies the tag into the echo label. The initiator then
polls until both labels agree or the budget runs out.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from cabundle import CABundleRegistry
from errors import NotReady, StoreError, TypeMismatch, is_permission_error
from k8s import KIND_SERVICE
from webhooks import SERVICE_TYPE_CLUSTER_IP, SERVICE_TYPE_NODE_PORT

DEBUG = os.environ.get("ADMGATE_DEBUG", "0") == "1"

STATUS_OK = "ok"
STATUS_PERMISSION_DENIED = "permission-denied"
STATUS_UNAVAILABLE = "unavailable"

DEFAULT_PORT = 443


class ProbeOutcome(Enum):
    SUCCEEDED = "succeeded"
    ECHOED = "echoed"
    FAILED_AT_READ = "failed-at-read"
    FAILED_AT_WRITE = "failed-at-write"
    NOT_INITIALIZED = "not-initialized"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass
class ProbeResult:
    outcome: ProbeOutcome
    tag: str = ""
    polls: int = 0
    error: Optional[BaseException] = None


@dataclass
class ServiceProbeInfo:
    status: str = STATUS_UNAVAILABLE
    port: int = DEFAULT_PORT
    service_type: str = SERVICE_TYPE_CLUSTER_IP
    label_tag: str = ""
    label_echo: str = ""
    error: Optional[BaseException] = None


def time_tag() -> str:
    return str(time.time_ns())


class ConnectivityProbe:
    def __init__(
        self,
        store,
        bundles: CABundleRegistry,
        namespace: str,
        interval: float = 1.0,
        initiator_attempts: int = 10,
        responder_attempts: int = 4,
        stop_event: Optional[threading.Event] = None,
        tag_fn: Callable[[], str] = time_tag,
    ):
        self.store = store
        self.bundles = bundles
        self.namespace = namespace
        self.interval = interval
        self.initiator_attempts = initiator_attempts
        self.responder_attempts = responder_attempts
        self.stop_event = stop_event or threading.Event()
        self.tag_fn = tag_fn

    def get_service_probe_info(self, name: str) -> ServiceProbeInfo:
        """Reachable port and current tag/echo labels of a webhook Service."""
        info = ServiceProbeInfo()
        try:
            svc = self.store.get(KIND_SERVICE, self.namespace, name)
        except StoreError as e:
            print(f"[probe] service={self.namespace}/{name} read failed: {e}")
            info.error = e
            if is_permission_error(e):
                info.status = STATUS_PERMISSION_DENIED
            return info

        if svc.get("kind", KIND_SERVICE) != KIND_SERVICE:
            info.error = TypeMismatch(f"{name}: expected Service, got {svc.get('kind')}")
            print(f"[probe] {info.error}")
            return info

        info.status = STATUS_OK
        labels = (svc.get("metadata", {}) or {}).get("labels", {}) or {}
        keys = self.bundles.label_keys(name)
        if keys:
            info.label_tag = labels.get(keys.tag_key, "")
            info.label_echo = labels.get(keys.echo_key, "")

        spec = svc.get("spec", {}) or {}
        if spec.get("type") == SERVICE_TYPE_NODE_PORT:
            for p in spec.get("ports", []) or []:
                if p and p.get("nodePort"):
                    info.port = int(p["nodePort"])
                    info.service_type = SERVICE_TYPE_NODE_PORT
                    return info
        if DEBUG:
            print(f"[probe] service={self.namespace}/{name} NodePort not found")
        return info

    def run_initiator(self, name: str, stop_event: Optional[threading.Event] = None) -> ProbeResult:
        stop = stop_event or self.stop_event
        keys = self.bundles.label_keys(name)
        if keys is None:
            print(f"[probe] service={name} label keys unknown")
            return ProbeResult(ProbeOutcome.FAILED_AT_READ, error=NotReady(f"no label keys for {name}"))

        try:
            svc = self.store.get(KIND_SERVICE, self.namespace, name)
        except StoreError as e:
            print(f"[probe] service={self.namespace}/{name} read failed: {e}")
            return ProbeResult(ProbeOutcome.FAILED_AT_READ, error=e)

        meta = svc.get("metadata", {}) or {}
        if not meta.get("resourceVersion"):
            print(f"[probe] service={name} has no resourceVersion yet; try again later")
            return ProbeResult(ProbeOutcome.NOT_INITIALIZED)

        tag = self.tag_fn()
        labels = dict(meta.get("labels", {}) or {})
        labels[keys.tag_key] = tag
        # the responder has to put the echo back
        labels.pop(keys.echo_key, None)
        body = dict(svc)
        body["metadata"] = {**meta, "labels": labels}
        try:
            self.store.update(KIND_SERVICE, body)
        except StoreError as e:
            print(f"[probe] service={name} tag write failed: {e}")
            return ProbeResult(ProbeOutcome.FAILED_AT_WRITE, tag=tag, error=e)

        for i in range(self.initiator_attempts):
            if stop.wait(self.interval):
                print(f"[probe] service={name} tag={tag} aborted after {i} polls")
                return ProbeResult(ProbeOutcome.ABORTED, tag=tag, polls=i)
            info = self.get_service_probe_info(name)
            if info.error is None and info.label_tag == tag and info.label_echo == tag:
                if DEBUG:
                    print(f"[probe] service={name} tag={tag} echoed on poll {i + 1}")
                return ProbeResult(ProbeOutcome.SUCCEEDED, tag=tag, polls=i + 1)

        print(f"[probe] service={name} tag={tag} not echoed after {self.initiator_attempts} polls")
        return ProbeResult(ProbeOutcome.EXHAUSTED, tag=tag, polls=self.initiator_attempts)

    def run_responder(
        self, expected_tag: str, name: str, stop_event: Optional[threading.Event] = None
    ) -> ProbeResult:
        """Called by the gate instance that reviewed a Service UPDATE carrying expected_tag."""
        stop = stop_event or self.stop_event
        keys = self.bundles.label_keys(name)
        if keys is None:
            print(f"[probe] service={name} label keys unknown")
            return ProbeResult(ProbeOutcome.FAILED_AT_READ, tag=expected_tag, error=NotReady(f"no label keys for {name}"))

        last_err: Optional[BaseException] = None
        for i in range(self.responder_attempts):
            if stop.wait(self.interval):
                return ProbeResult(ProbeOutcome.ABORTED, tag=expected_tag, polls=i)
            try:
                svc = self.store.get(KIND_SERVICE, self.namespace, name)
            except StoreError as e:
                print(f"[probe] service={self.namespace}/{name} read failed: {e}")
                last_err = e
                continue

            meta = svc.get("metadata", {}) or {}
            labels = meta.get("labels", {}) or {}
            if not meta.get("resourceVersion"):
                if DEBUG:
                    print(f"[probe] service={name} has no resourceVersion yet; poll {i + 1}")
                continue
            if labels.get(keys.tag_key) != expected_tag:
                if DEBUG:
                    print(f"[probe] service={name} tag={labels.get(keys.tag_key)!r} want={expected_tag} poll {i + 1}")
                continue
            if labels.get(keys.echo_key) == expected_tag:
                # another replica already answered
                return ProbeResult(ProbeOutcome.ECHOED, tag=expected_tag, polls=i + 1)

            body = dict(svc)
            body["metadata"] = {**meta, "labels": {**labels, keys.echo_key: expected_tag}}
            try:
                self.store.update(KIND_SERVICE, body)
            except StoreError as e:
                print(f"[probe] service={name} echo write failed: {e}")
                return ProbeResult(ProbeOutcome.FAILED_AT_WRITE, tag=expected_tag, polls=i + 1, error=e)
            print(f"[probe] service={name} echoed tag={expected_tag}")
            return ProbeResult(ProbeOutcome.ECHOED, tag=expected_tag, polls=i + 1)

        return ProbeResult(ProbeOutcome.EXHAUSTED, tag=expected_tag, polls=self.responder_attempts, error=last_err)
