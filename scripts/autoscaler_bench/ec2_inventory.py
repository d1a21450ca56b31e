"""EC2 inventory client for autoscaler benchmarking.

This module wraps the boto3 EC2 client to list the instances an autoscaler
launched for a node pool or node group, identified by tag. API failures are
translated into TransientAPIError (rate limited) or QueryError (anything
else) so the poller can decide whether to retry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    ConfigurationError,
    ErrorClass,
    QueryError,
    TransientAPIError,
    classify_error_code,
)
from .logger import logger
from .models import INSTANCE_STATE_TERMINATED, InstanceSummary

if TYPE_CHECKING:
    from datetime import datetime


class EC2InventoryClient:
    """Lists EC2 instances by tag."""

    def __init__(self, ec2: Any) -> None:
        """Initialise with a boto3 EC2 client."""
        self.ec2 = ec2

    @classmethod
    def from_profile(cls, profile: str) -> EC2InventoryClient:
        """Create a client for a named AWS profile and verify its credentials.

        Returns:
            A ready-to-use EC2InventoryClient.

        Raises:
            ConfigurationError: If the profile is unknown or its credentials are rejected.
        """
        try:
            session = boto3.Session(profile_name=profile)
            ec2 = session.client("ec2")
            ec2.describe_regions()
        except (BotoCoreError, ClientError) as e:
            msg = (
                f"Failed to validate AWS credentials for profile '{profile}': {e}. "
                "Ensure the AWS profile is configured correctly."
            )
            raise ConfigurationError(msg) from e

        logger.debug("Using AWS profile '%s' in region %s", profile, session.region_name)
        return cls(ec2)

    def list_instances_by_tag(self, tag_key: str, tag_value: str) -> list[InstanceSummary]:
        """List every instance carrying the given tag, across all pages.

        Returns:
            Instance summaries in the order the API returned them.

        Raises:
            TransientAPIError: If the request was throttled.
            QueryError: For any other API or transport failure.
        """
        filters = [{"Name": f"tag:{tag_key}", "Values": [tag_value]}]
        logger.debug("[API] DescribeInstances - Filters=%s", filters)

        instances: list[InstanceSummary] = []
        try:
            paginator = self.ec2.get_paginator("describe_instances")
            for page in paginator.paginate(Filters=filters):
                for reservation in page.get("Reservations", []):
                    instances.extend(
                        _summarise(instance) for instance in reservation.get("Instances", [])
                    )
        except ClientError as e:
            raise _translate_client_error(e) from e
        except BotoCoreError as e:
            msg = f"Error retrieving EC2 instances: {e}"
            raise QueryError(msg) from e

        return instances


def _summarise(instance: dict[str, Any]) -> InstanceSummary:
    return InstanceSummary(
        instance_id=instance["InstanceId"],
        launch_time=instance["LaunchTime"],
        state=instance.get("State", {}).get("Name", "unknown"),
        address=instance.get("PrivateDnsName", ""),
    )


def _translate_client_error(error: ClientError) -> TransientAPIError | QueryError:
    """Map a botocore ClientError to the benchmarker's error kinds.

    Returns:
        The exception to raise in place of the ClientError.
    """
    details = error.response.get("Error", {})
    code = details.get("Code")
    message = details.get("Message", str(error))
    if classify_error_code(code) is ErrorClass.TRANSIENT:
        return TransientAPIError(f"EC2 request throttled: {message}", code=code)
    return QueryError(f"Error retrieving EC2 instances ({code}): {message}")


def launched_since(instances: list[InstanceSummary], started_at: datetime) -> list[InstanceSummary]:
    """Keep instances launched at or after started_at that are not terminated.

    Instances from earlier runs that share the tag are dropped this way.

    Returns:
        The matching instances, in their original order.
    """
    return [
        instance
        for instance in instances
        if instance.launch_time >= started_at and instance.state != INSTANCE_STATE_TERMINATED
    ]
