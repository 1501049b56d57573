# k8s.py
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError

from errors import Conflict, NotFound, PermissionDenied, StoreError, is_permission_error
from webhooks import KIND_WEBHOOK_CONFIG, api_version_for_server

KIND_NAMESPACE = "Namespace"
KIND_SERVICE = "Service"


def load_kube() -> None:
    try:
        config.load_incluster_config()
        print("[k8s] using in-cluster config")
    except config.ConfigException:
        config.load_kube_config()
        print("[k8s] using kubeconfig (local)")


def parse_server_version(major: str, minor: str) -> Tuple[int, int]:
    # managed clusters report things like minor="22+"
    def _num(v: str) -> int:
        digits = re.sub(r"[^0-9]", "", str(v or ""))
        return int(digits) if digits else 0

    return _num(major), _num(minor)


def translate_error(e: BaseException) -> StoreError:
    if isinstance(e, HTTPError):
        # never reached the API server: refused, timed out, TLS, retries exhausted
        return StoreError(f"api server unreachable: {e}", None)
    status = getattr(e, "status", None)
    msg = str(e)
    if status == 404:
        return NotFound(msg, status)
    if status == 409:
        return Conflict(msg, status)
    if status == 403 or is_permission_error(e):
        return PermissionDenied(msg, status)
    return StoreError(msg, status)


# ApiException covers DynamicApiError and errors raised during discovery
_CLIENT_ERRORS = (ApiException, HTTPError)


class KubeStore:
    """Resource store over the dynamic client.

    Objects go in and come out as plain JSON dicts (camelCase keys, as the
    API server serves them). Writes take the apiVersion from the body, so a
    caller decides which schema generation it is writing.

    Every client failure leaves here as a StoreError.
    """

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.api_client = api_client or client.ApiClient()
        self._dyn: Optional[dynamic.DynamicClient] = None
        self._version: Optional[Tuple[int, int]] = None

    @property
    def dyn(self) -> dynamic.DynamicClient:
        # discovery talks to the server, so build it on first use
        if self._dyn is None:
            try:
                self._dyn = dynamic.DynamicClient(self.api_client)
            except _CLIENT_ERRORS as e:
                raise translate_error(e) from e
        return self._dyn

    def server_version(self) -> Tuple[int, int]:
        if self._version is None:
            try:
                info = client.VersionApi(self.api_client).get_code()
            except _CLIENT_ERRORS as e:
                raise translate_error(e) from e
            self._version = parse_server_version(info.major, info.minor)
            print(f"[k8s] server version {self._version[0]}.{self._version[1]}")
        return self._version

    def _api_version(self, kind: str, obj: Optional[dict] = None) -> str:
        if obj and obj.get("apiVersion"):
            return obj["apiVersion"]
        if kind == KIND_WEBHOOK_CONFIG:
            return api_version_for_server(self.server_version())
        return "v1"

    def _resource(self, kind: str, api_version: str):
        try:
            return self.dyn.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise NotFound(f"{kind} ({api_version}) is not served: {e}", 404) from e
        except _CLIENT_ERRORS as e:
            raise translate_error(e) from e

    def list(self, kind: str) -> List[dict]:
        res = self._resource(kind, self._api_version(kind))
        try:
            out = res.get().to_dict()
        except _CLIENT_ERRORS as e:
            raise translate_error(e) from e
        return list(out.get("items") or [])

    def get(self, kind: str, namespace: str, name: str) -> dict:
        res = self._resource(kind, self._api_version(kind))
        try:
            if res.namespaced:
                obj = res.get(name=name, namespace=namespace)
            else:
                obj = res.get(name=name)
        except _CLIENT_ERRORS as e:
            raise translate_error(e) from e
        return obj.to_dict()

    def add(self, kind: str, obj: dict) -> dict:
        res = self._resource(kind, self._api_version(kind, obj))
        try:
            return res.create(body=obj).to_dict()
        except _CLIENT_ERRORS as e:
            raise translate_error(e) from e

    def update(self, kind: str, obj: dict) -> dict:
        """PUT the object; metadata.resourceVersion must be the one just read."""
        res = self._resource(kind, self._api_version(kind, obj))
        try:
            return res.replace(body=obj).to_dict()
        except _CLIENT_ERRORS as e:
            raise translate_error(e) from e

    def delete(self, kind: str, obj: dict) -> None:
        res = self._resource(kind, self._api_version(kind, obj))
        meta = obj.get("metadata", {}) or {}
        try:
            if res.namespaced:
                res.delete(name=meta.get("name"), namespace=meta.get("namespace"))
            else:
                res.delete(name=meta.get("name"))
        except _CLIENT_ERRORS as e:
            raise translate_error(e) from e
