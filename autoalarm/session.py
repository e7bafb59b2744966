import logging
from typing import Any, Dict, NamedTuple, Optional

import boto3

from .constants import DEFAULT_REGION

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "autoalarm"


def assume_role(
    role_arn: str,
    region: str = DEFAULT_REGION,
    role_session_name: str = DEFAULT_SESSION_NAME,
) -> boto3.Session:
    """Assumes a role and returns a boto3 Session holding its credentials."""
    try:
        sts_client = boto3.client("sts", region_name=region)
        credentials = sts_client.assume_role(
            RoleArn=role_arn, RoleSessionName=role_session_name
        )["Credentials"]

        return boto3.Session(
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
            region_name=region,
        )
    except Exception as e:
        logger.error(f"Failed to assume role {role_arn}: {e}")
        raise


class SessionManager:
    _sessions: Dict[str, boto3.Session] = {}

    @classmethod
    def get_session(
        cls,
        region: str = DEFAULT_REGION,
        role_arn: Optional[str] = None,
        role_session_name: str = DEFAULT_SESSION_NAME,
    ) -> boto3.Session:
        """Get or create a boto3 Session, assuming a role when one is given."""
        session_key = f"{role_arn or 'default'}:{region}"

        if session_key not in cls._sessions:
            if role_arn:
                cls._sessions[session_key] = assume_role(role_arn, region, role_session_name)
            else:
                cls._sessions[session_key] = boto3.Session(region_name=region)

        return cls._sessions[session_key]

    @classmethod
    def clear_session(cls, region: str = DEFAULT_REGION, role_arn: Optional[str] = None) -> None:
        """Remove a session from the cache."""
        session_key = f"{role_arn or 'default'}:{region}"
        if session_key in cls._sessions:
            del cls._sessions[session_key]
            logger.info(f"Session cleared for {session_key}")


class AwsClients(NamedTuple):
    cloudwatch: Any
    amp: Any
    tagging: Any
    ec2: Any
    sts: Any = None

    @classmethod
    def from_session(cls, session: boto3.Session) -> "AwsClients":
        return cls(
            cloudwatch=session.client("cloudwatch"),
            amp=session.client("amp"),
            tagging=session.client("resourcegroupstaggingapi"),
            ec2=session.client("ec2"),
            sts=session.client("sts"),
        )
