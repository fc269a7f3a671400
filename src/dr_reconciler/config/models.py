"""Pydantic models for configuration schema."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from dr_reconciler.engine.scheduler import AttemptPolicy, OuterRetryPolicy
from dr_reconciler.utils.retry import BackoffPolicy


class BackoffConfig(BaseModel):
    """Exponential backoff between attempts."""

    base_delay: float = Field(10.0, gt=0, description="First delay in seconds")
    multiplier: float = Field(2.0, ge=1.0, description="Growth factor per attempt")
    max_delay: float = Field(300.0, gt=0, description="Upper bound on any delay")
    jitter: bool = False

    @model_validator(mode="after")
    def validate_bounds(self):
        """The cap may not be below the first delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self

    def to_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay=self.base_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


class SchedulerPolicy(BaseModel):
    """Attempt policy of one job plus its optional retry-forever wrapper."""

    max_attempts: int = Field(60, ge=1, description="Attempts per cycle")
    interval_seconds: float = Field(60.0, ge=0, description="Fixed delay between attempts")
    backoff: Optional[BackoffConfig] = Field(None, description="Replaces the fixed interval when set")
    retry_forever: bool = Field(False, description="Restart exhausted cycles indefinitely")
    outer_interval_seconds: float = Field(60.0, ge=0, description="Pause between restarted cycles")

    def attempt_policy(self) -> AttemptPolicy:
        return AttemptPolicy(
            max_attempts=self.max_attempts,
            interval=self.interval_seconds,
            backoff=self.backoff.to_policy() if self.backoff else None,
        )

    def outer_policy(self) -> OuterRetryPolicy:
        return OuterRetryPolicy(enabled=self.retry_forever, interval=self.outer_interval_seconds)


class CredentialRetryConfig(BaseModel):
    """Retry policy for acquiring a cluster's credentials."""

    max_retries: int = Field(3, ge=0)
    base_delay: float = Field(5.0, ge=0)
    max_delay: float = Field(60.0, ge=0)


class ClusterSettings(BaseModel):
    """Hub and managed cluster topology and how to reach them."""

    hub: str = Field("local-cluster", description="Hub cluster name")
    primary: str = Field("ocp-primary", description="Primary managed cluster")
    secondary: str = Field("ocp-secondary", description="Secondary managed cluster")
    managed: List[str] = Field(default_factory=list, description="Managed clusters; primary and secondary when empty")
    discover_managed: bool = Field(False, description="List ManagedClusters on the hub instead")
    kubeconfig_dir: str = Field("/tmp/kubeconfigs", description="Where resolved kubeconfigs are written")
    request_timeout: int = Field(30, ge=1, description="Per-request API timeout in seconds")
    oc_binary: str = "oc"
    service_account_dir: str = "/var/run/secrets/kubernetes.io/serviceaccount"
    api_server: str = "https://kubernetes.default.svc"
    credential_retry: CredentialRetryConfig = Field(default_factory=CredentialRetryConfig)

    @model_validator(mode="after")
    def validate_topology(self):
        """Default the managed set and keep the hub out of it."""
        if not self.managed:
            self.managed = [self.primary, self.secondary]
        if len(set(self.managed)) != len(self.managed):
            raise ValueError("managed clusters must be unique")
        if self.hub in self.managed:
            raise ValueError(f"hub cluster '{self.hub}' cannot also be a managed cluster")
        return self

    @property
    def all_clusters(self) -> List[str]:
        return [self.hub] + list(self.managed)


class PodRestartTarget(BaseModel):
    """Pods restarted after the CA bundle changes."""

    namespace: str
    selector: str = Field(..., description="Label selector")
    hub: bool = Field(False, description="Restart on the hub instead of managed clusters")


class CertificateSettings(BaseModel):
    """CA bundle extraction, distribution and validation."""

    configmap_name: str = "cluster-proxy-ca-bundle"
    configmap_namespace: str = "openshift-config"
    bundle_key: str = "ca-bundle.crt"
    min_bundle_size: int = Field(100, ge=0, description="Minimum bytes of each distributed bundle")
    precheck_min_bundle_size: int = Field(20000, ge=0, description="Minimum bytes of the hub bundle")
    min_certificates: int = Field(15, ge=0, description="Minimum certificates in the hub bundle")
    min_cluster_mentions: int = Field(2, ge=0, description="Minimum mentions of every cluster in the bundle")
    max_certs_per_source: int = Field(5, ge=1)
    trusted_ca_configmap: str = "trusted-ca-bundle"
    trusted_ca_namespace: str = "openshift-config-managed"
    router_ca_secret: str = "router-ca"
    router_ca_namespace: str = "openshift-ingress-operator"
    router_ca_keys: List[str] = Field(default_factory=lambda: ["tls.crt", "ca.crt"])
    ramen_configmap: str = "ramen-hub-operator-config"
    ramen_namespace: str = "openshift-operators"
    ramen_config_key: str = "ramen_manager_config.yaml"
    min_s3_profiles: int = Field(2, ge=0)
    placeholder_markers: List[str] = Field(default_factory=lambda: [
        "Placeholder for ODF SSL certificate bundle",
        "This will be populated by the certificate extraction job",
    ])
    restart: List[PodRestartTarget] = Field(default_factory=lambda: [
        PodRestartTarget(namespace="openshift-dr-system", selector="app=ramenddr-cluster-operator"),
        PodRestartTarget(namespace="openshift-adp", selector="component=velero"),
    ])
    restart_timeout: int = Field(300, ge=1, description="Seconds to wait for restarted pods")


class DRPCSettings(BaseModel):
    """DR placement control to watch."""

    namespace: str = "openshift-dr-ops"
    name: str = "gitops-vm-protection"
    protected_namespace: str = "gitops-vms"


class ArgoSettings(BaseModel):
    """Argo CD application whose automated sync gets disabled."""

    app_name: str = "regional-dr"
    app_namespace: str = "ramendr-starter-kit-hub"


class SubmarinerSettings(BaseModel):
    """Security group tagging for Submariner gateways."""

    tag_value: str = "owned"
    gateway_tag: str = "submariner.io/gateway"
    name_pattern: str = "*submariner*"
    aws_credentials_secret_suffix: str = "-cluster-aws-creds"
    default_region: Optional[str] = Field(None, description="Used when the region cannot be discovered")


class StorageSettings(BaseModel):
    """ODF and NooBaa health checks."""

    odf_namespace: str = "openshift-storage"
    odf_operator_selector: str = "app.kubernetes.io/name=odf-operator"
    noobaa_namespace: str = "openshift-storage"


def default_policies() -> Dict[str, SchedulerPolicy]:
    """Per-job attempt policies."""
    return {
        "dr-prerequisites": SchedulerPolicy(max_attempts=120, interval_seconds=60, retry_forever=True),
        "drpc-sync-disable": SchedulerPolicy(max_attempts=60, interval_seconds=60),
        "submariner-sg-tag": SchedulerPolicy(max_attempts=30, interval_seconds=10),
        "ca-precheck": SchedulerPolicy(max_attempts=120, interval_seconds=30),
        "ca-distribution": SchedulerPolicy(max_attempts=120, interval_seconds=30),
    }


class ReconcilerConfig(BaseModel):
    """Complete configuration."""

    clusters: ClusterSettings = Field(default_factory=ClusterSettings)
    certificates: CertificateSettings = Field(default_factory=CertificateSettings)
    drpc: DRPCSettings = Field(default_factory=DRPCSettings)
    argo: ArgoSettings = Field(default_factory=ArgoSettings)
    submariner: SubmarinerSettings = Field(default_factory=SubmarinerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    jobs: Dict[str, SchedulerPolicy] = Field(default_factory=default_policies)
    dry_run: bool = False
    log_level: str = Field("info", pattern="^(debug|info|warning|error)$")
    log_dir: Optional[str] = None

    @field_validator("jobs")
    @classmethod
    def merge_default_policies(cls, v: Dict[str, SchedulerPolicy]) -> Dict[str, SchedulerPolicy]:
        """Jobs without an explicit policy keep their defaults."""
        merged = default_policies()
        merged.update(v)
        return merged

    def policy_for(self, job: str) -> SchedulerPolicy:
        return self.jobs.get(job) or SchedulerPolicy()
