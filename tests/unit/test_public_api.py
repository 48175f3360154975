from __future__ import annotations

import access_engine
from access_engine import errors, store


def test_root_exports_resolve_in_sorted_order() -> None:
    assert access_engine.__all__ == sorted(access_engine.__all__)
    missing = [name for name in access_engine.__all__ if not hasattr(access_engine, name)]
    assert missing == []


def test_every_error_and_store_interface_is_exported() -> None:
    assert set(errors.__all__) <= set(access_engine.__all__)
    assert set(store.__all__) <= set(access_engine.__all__)
    assert access_engine.DelegationDenied is errors.DelegationDenied
    assert access_engine.AssignmentStore is store.AssignmentStore
