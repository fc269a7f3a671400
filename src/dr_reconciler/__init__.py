"""Multi-cluster disaster recovery reconciliation for OpenShift."""

from dr_reconciler.runner import build_driver, run

__version__ = "0.1.0"

__all__ = ["build_driver", "run", "__version__"]
