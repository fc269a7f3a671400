"""AWS client management and security group tagging."""

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from dr_reconciler.utils.errors import ErrorContext, error_handler
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AWSCredentials:
    """Static AWS credentials for one managed cluster's account."""
    access_key_id: str
    secret_access_key: str
    region: str
    session_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"AWSCredentials(access_key_id='{self.access_key_id[:4]}...', region='{self.region}')"


class AWSClientManager:
    """Manages a boto3 session and cached clients for one set of credentials."""

    def __init__(
        self,
        credentials: Optional[AWSCredentials] = None,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 10
    ):
        """Initialize AWS client manager.

        Args:
            credentials: Explicit credentials; the default chain is used when None
            profile: AWS profile name, used only without explicit credentials
            region: AWS region override
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.credentials = credentials
        self.profile = profile
        self.region = region or (credentials.region if credentials else None)
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}

        # Adaptive retries cover throttling within a single call
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'adaptive',
                'max_attempts': 5
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            kwargs = {}
            if self.credentials:
                kwargs['aws_access_key_id'] = self.credentials.access_key_id
                kwargs['aws_secret_access_key'] = self.credentials.secret_access_key
                if self.credentials.session_token:
                    kwargs['aws_session_token'] = self.credentials.session_token
            elif self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}")

        return self._session

    def get_client(self, service_name: str):
        """Get a cached boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'ec2')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        client = self.session.client(service_name, config=self._boto_config)
        self._clients[service_name] = client
        logger.debug(f"Created {service_name} client")
        return client


class SecurityGroupTagger:
    """Finds EC2 security groups and keeps tags on them converged."""

    def __init__(self, ec2_client, cluster: Optional[str] = None):
        """Initialize tagger.

        Args:
            ec2_client: boto3 EC2 client
            cluster: Managed cluster the account belongs to, for diagnostics
        """
        self.ec2_client = ec2_client
        self.cluster = cluster

    def _context(self, operation: str, group_id: Optional[str] = None) -> ErrorContext:
        return ErrorContext(
            cluster=self.cluster,
            resource_kind='SecurityGroup',
            name=group_id,
            operation=operation,
        )

    def describe_security_groups(self, filters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Describe security groups matching EC2 filters.

        Args:
            filters: EC2 filter list, e.g. [{'Name': 'tag:Name', 'Values': ['*submariner*']}]

        Returns:
            Matching security group descriptions
        """
        try:
            response = self.ec2_client.describe_security_groups(Filters=filters)
        except (ClientError, BotoCoreError) as e:
            raise error_handler.handle_exception(e, self._context('describe_security_groups'))
        return response.get('SecurityGroups', [])

    def find_first(self, filters: List[Dict[str, Any]]) -> Optional[str]:
        """Return the GroupId of the first match, or None."""
        groups = self.describe_security_groups(filters)
        if not groups:
            return None
        if len(groups) > 1:
            logger.debug(f"{len(groups)} security groups matched {filters}, using {groups[0]['GroupId']}")
        return groups[0]['GroupId']

    def get_tag(self, group_id: str, key: str) -> Optional[str]:
        """Current value of a tag on a security group, or None if unset."""
        try:
            response = self.ec2_client.describe_security_groups(GroupIds=[group_id])
        except (ClientError, BotoCoreError) as e:
            raise error_handler.handle_exception(e, self._context('get_tag', group_id))

        groups = response.get('SecurityGroups', [])
        if not groups:
            return None
        tags = {tag['Key']: tag['Value'] for tag in groups[0].get('Tags', [])}
        return tags.get(key)

    def ensure_tag(self, group_id: str, key: str, value: str) -> bool:
        """Make sure `key=value` is set on the group.

        Args:
            group_id: Security group id
            key: Tag key
            value: Desired tag value

        Returns:
            True if the tag was written, False if it already had the value
        """
        current = self.get_tag(group_id, key)
        if current == value:
            logger.info(f"Security group {group_id} already tagged {key}={value}")
            return False

        try:
            self.ec2_client.create_tags(
                Resources=[group_id],
                Tags=[{'Key': key, 'Value': value}]
            )
        except (ClientError, BotoCoreError) as e:
            raise error_handler.handle_exception(e, self._context('create_tags', group_id))

        logger.info(f"Tagged security group {group_id} with {key}={value}")
        return True
