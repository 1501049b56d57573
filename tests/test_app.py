from __future__ import annotations

from app import read_ca_bundle, reconcile_all, sync_ca_bundles
from config import Settings, desired_gate_specs
from reconcile import ConfigReconciler
from webhooks import ADMISSION_CONFIG_NAME, CRD_CONFIG_NAME, KIND_WEBHOOK_CONFIG, GateSpec


def test_read_missing_ca_bundle(tmp_path) -> None:
    assert read_ca_bundle(str(tmp_path / "nope.crt")) == b""


def test_sync_ca_bundles_detects_rotation(tmp_path, bundles) -> None:
    ca = tmp_path / "ca.crt"
    ca.write_bytes(b"one")
    settings = Settings(ca_bundle_path=str(ca))

    assert sync_ca_bundles(bundles, settings, initial=True) is True
    assert sync_ca_bundles(bundles, settings, initial=False) is False

    ca.write_bytes(b"two")
    assert sync_ca_bundles(bundles, settings, initial=False) is True
    assert all(bundles.get_bundle(s) == b"two" for s in settings.services)


def test_reconcile_all_registers_both_configs(store, bundles) -> None:
    settings = Settings()
    for svc in settings.services:
        bundles.set_bundle(svc, b"ca")

    reconcile_all(ConfigReconciler(store, bundles, settings.namespace), desired_gate_specs(settings), True)

    assert store.raw(KIND_WEBHOOK_CONFIG, ADMISSION_CONFIG_NAME)
    assert store.raw(KIND_WEBHOOK_CONFIG, CRD_CONFIG_NAME)


def test_reconcile_all_skips_invalid_and_unready_specs(store, bundles) -> None:
    settings = Settings()
    specs = [GateSpec(name="broken")] + desired_gate_specs(settings)

    # no bundles loaded: every valid spec is NotReady, which must not escape
    reconcile_all(ConfigReconciler(store, bundles, settings.namespace), specs, True)

    assert store.writes() == []
