"""Cloud credentials of managed clusters, read from hub secrets."""

from typing import Callable, Optional

from dr_reconciler.clients.aws import AWSClientManager, AWSCredentials, SecurityGroupTagger
from dr_reconciler.clients.cluster import ClusterClient
from dr_reconciler.config.models import SubmarinerSettings
from dr_reconciler.engine.strategies import Strategy, first_success
from dr_reconciler.utils.errors import CredentialError, ErrorContext, ResourceNotFoundError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

REGION_CLAIM = "region.open-cluster-management.io"


class AWSCredentialResolver:
    """Builds AWS credentials and security group taggers per managed cluster."""

    def __init__(
        self,
        hub: ClusterClient,
        cluster_client: Callable[[str], ClusterClient],
        settings: Optional[SubmarinerSettings] = None
    ):
        """Initialize resolver.

        Args:
            hub: Hub cluster client, where the credential secrets live
            cluster_client: Returns the client of a managed cluster by name
            settings: Secret naming and region fallback
        """
        self.hub = hub
        self.cluster_client = cluster_client
        self.settings = settings or SubmarinerSettings()

    def credentials(self, cluster: str) -> AWSCredentials:
        """Read `<cluster>-cluster-aws-creds` and determine the region.

        Raises:
            ResourceNotFoundError: Secret not created yet
            CredentialError: Keys or region missing
        """
        secret_name = f"{cluster}{self.settings.aws_credentials_secret_suffix}"
        context = ErrorContext(cluster=cluster, resource_kind='secret', namespace=cluster, name=secret_name)

        secret = self.hub.get("secret", cluster, secret_name)
        if secret is None:
            raise ResourceNotFoundError(f"AWS credentials secret {cluster}/{secret_name} not found on the hub",
                                        context=context)

        access_key = secret.decoded("aws_access_key_id")
        secret_key = secret.decoded("aws_secret_access_key")
        if not access_key or not secret_key:
            raise CredentialError(f"AWS credentials secret {cluster}/{secret_name} is missing access keys",
                                  context=context)

        region = self.region(cluster)
        if not region:
            raise CredentialError(f"Could not determine the AWS region of {cluster}", context=context)

        logger.info(f"Retrieved AWS credentials for {cluster} (region: {region})")
        return AWSCredentials(access_key_id=access_key.strip(), secret_access_key=secret_key.strip(), region=region)

    def region(self, cluster: str) -> Optional[str]:
        """Region from the cluster's infrastructure, then its hub cluster claim."""

        def from_infrastructure(name: str) -> Optional[str]:
            infra = self.cluster_client(name).get("infrastructure", None, "cluster")
            return infra.field("status.platformStatus.aws.region") if infra else None

        def from_cluster_claim(name: str) -> Optional[str]:
            info = self.hub.get("managedclusterinfo", name, name)
            if info is None:
                return None
            for claim in info.field("status.clusterClaims", []):
                if claim.get("name") == REGION_CLAIM and claim.get("value"):
                    return claim["value"]
            return None

        return first_success(
            [
                Strategy("infrastructure", from_infrastructure),
                Strategy("cluster-claim", from_cluster_claim),
                Strategy("configured-default", lambda name: self.settings.default_region),
            ],
            cluster,
        )

    def tagger(self, cluster: str) -> SecurityGroupTagger:
        """Security group tagger using the cluster's own AWS account."""
        manager = AWSClientManager(credentials=self.credentials(cluster))
        return SecurityGroupTagger(manager.get_client('ec2'), cluster=cluster)
