from dataclasses import dataclass

from appoperator.diagnostics import SharedDiagnostics
from appoperator.metrics import Metrics
from appoperator.store.base import ResourceStore


@dataclass
class ReconcileContext:
    """Shared by reference with every reconcile; built once per process by the Operator"""

    store: ResourceStore
    diagnostics: SharedDiagnostics
    metrics: Metrics
