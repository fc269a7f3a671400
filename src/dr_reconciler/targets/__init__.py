"""Cluster target and cloud credential resolution."""

from dr_reconciler.targets.kubeconfig import KubeconfigResolver, kubeconfig_from_secret, write_private_file
from dr_reconciler.targets.aws import AWSCredentialResolver

__all__ = [
    'KubeconfigResolver',
    'kubeconfig_from_secret',
    'write_private_file',
    'AWSCredentialResolver',
]
