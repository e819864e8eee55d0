"""
Package-manager backend adapters.

The executor works through the ordered adapter list; the rollback engine
works through a Backend -> adapter mapping built from the same list.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from ..records import Backend
from ..system import APPLY_TIMEOUT, DEFAULT_TIMEOUT
from .apt import AptAdapter
from .base import ApplyResult, BackendAdapter, PendingUnit, UnitChange
from .dnf import DnfAdapter
from .flatpak import FlatpakAdapter
from .snap import SnapAdapter


def create_adapters(
    timeout: float = DEFAULT_TIMEOUT,
    apply_timeout: float = APPLY_TIMEOUT,
) -> List[BackendAdapter]:
    """All supported adapters, in the order a run processes them."""
    kwargs = {"timeout": timeout, "apply_timeout": apply_timeout}
    return [
        AptAdapter(**kwargs),
        DnfAdapter(**kwargs),
        FlatpakAdapter(scope="system", **kwargs),
        FlatpakAdapter(scope="user", **kwargs),
        SnapAdapter(**kwargs),
    ]


def revert_registry(adapters: Iterable[BackendAdapter]) -> Dict[Backend, BackendAdapter]:
    """
    Map each backend to the adapter that reverts its records.

    The first adapter per backend wins. Flatpak records carry their own
    scope, so the system-scope instance reverts both scopes.
    """
    registry: Dict[Backend, BackendAdapter] = {}
    for adapter in adapters:
        registry.setdefault(adapter.backend, adapter)
    return registry


__all__ = [
    "ApplyResult",
    "BackendAdapter",
    "PendingUnit",
    "UnitChange",
    "AptAdapter",
    "DnfAdapter",
    "FlatpakAdapter",
    "SnapAdapter",
    "create_adapters",
    "revert_registry",
]
