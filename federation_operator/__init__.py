"""Multi-cluster federation operator: keeps federated ingresses converged across member clusters."""

__version__ = "1.0.0"
