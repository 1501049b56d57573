from __future__ import annotations

import copy

import pytest

from cabundle import CABundleRegistry
from errors import Conflict, NotFound

WRITE_METHODS = ("add", "update", "delete")


class FakeStore:
    """In-memory resource store with resourceVersion checks on update."""

    def __init__(self, version=(1, 22)):
        self.version = version
        self.objects = {}
        self.calls = []
        self.fail = {}  # method -> [exceptions to raise, in order]
        self.on_get = None  # hook(store, kind, namespace, name) run before a get answers
        self._rv = 100

    def server_version(self):
        return self.version

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    @staticmethod
    def _key(kind, obj):
        meta = obj.get("metadata", {}) or {}
        return kind, meta.get("namespace", "") or "", meta.get("name")

    def _maybe_fail(self, method):
        errs = self.fail.get(method)
        if errs:
            raise errs.pop(0)

    def put(self, kind, obj) -> dict:
        obj = copy.deepcopy(obj)
        obj.setdefault("metadata", {}).setdefault("resourceVersion", self._next_rv())
        self.objects[self._key(kind, obj)] = obj
        return obj

    def raw(self, kind, name, namespace="") -> dict:
        return self.objects[(kind, namespace, name)]

    def writes(self):
        return [c for c in self.calls if c[0] in WRITE_METHODS]

    def list(self, kind):
        self.calls.append(("list", kind, ""))
        self._maybe_fail("list")
        return [copy.deepcopy(o) for (k, _, _), o in self.objects.items() if k == kind]

    def get(self, kind, namespace, name):
        self.calls.append(("get", kind, name))
        if self.on_get is not None:
            self.on_get(self, kind, namespace, name)
        self._maybe_fail("get")
        key = (kind, namespace or "", name)
        if key not in self.objects:
            raise NotFound(f"{kind} {name} not found", 404)
        return copy.deepcopy(self.objects[key])

    def add(self, kind, obj):
        self.calls.append(("add", kind, obj["metadata"]["name"], copy.deepcopy(obj)))
        self._maybe_fail("add")
        key = self._key(kind, obj)
        if key in self.objects:
            raise Conflict(f"{kind} {key[2]} already exists", 409)
        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = self._next_rv()
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, kind, obj):
        self.calls.append(("update", kind, obj["metadata"]["name"], copy.deepcopy(obj)))
        self._maybe_fail("update")
        key = self._key(kind, obj)
        if key not in self.objects:
            raise NotFound(f"{kind} {key[2]} not found", 404)
        current = self.objects[key]["metadata"].get("resourceVersion")
        if obj["metadata"].get("resourceVersion") != current:
            raise Conflict(f"{kind} {key[2]} was modified", 409)
        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = self._next_rv()
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def delete(self, kind, obj):
        self.calls.append(("delete", kind, obj["metadata"]["name"]))
        self._maybe_fail("delete")
        key = self._key(kind, obj)
        if key not in self.objects:
            raise NotFound(f"{kind} {key[2]} not found", 404)
        del self.objects[key]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def bundles() -> CABundleRegistry:
    return CABundleRegistry()
