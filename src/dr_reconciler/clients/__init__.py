"""Clients for the cluster control plane and the cloud provider API."""

from dr_reconciler.clients.resources import Condition, Resource
from dr_reconciler.clients.cluster import ClusterClient, WaitOutcome, subprocess_runner
from dr_reconciler.clients.aws import AWSCredentials, AWSClientManager, SecurityGroupTagger

__all__ = [
    'Condition',
    'Resource',
    'ClusterClient',
    'WaitOutcome',
    'subprocess_runner',
    'AWSCredentials',
    'AWSClientManager',
    'SecurityGroupTagger',
]
