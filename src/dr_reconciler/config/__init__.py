"""Configuration management for the DR reconciler."""

from dr_reconciler.config.models import (
    ArgoSettings,
    BackoffConfig,
    CertificateSettings,
    ClusterSettings,
    CredentialRetryConfig,
    DRPCSettings,
    PodRestartTarget,
    ReconcilerConfig,
    SchedulerPolicy,
    StorageSettings,
    SubmarinerSettings,
)
from dr_reconciler.config.parser import Config, ConfigValidationError

__all__ = [
    "ArgoSettings",
    "BackoffConfig",
    "CertificateSettings",
    "ClusterSettings",
    "CredentialRetryConfig",
    "DRPCSettings",
    "PodRestartTarget",
    "ReconcilerConfig",
    "SchedulerPolicy",
    "StorageSettings",
    "SubmarinerSettings",
    "Config",
    "ConfigValidationError",
]
