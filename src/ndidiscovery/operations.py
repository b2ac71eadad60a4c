"""
Day-two operations on a deployed NDI discovery stack.

CloudFormation owns the lifecycle of the servers; these helpers only read the
stack back (endpoints, instance state) and lift the termination protection
the servers are created with, so that the stack can be torn down.
"""

from logging import getLogger
from typing import Any, List, Optional

import boto3
from pydantic import BaseModel
from rich import box, print
from rich.table import Table
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ._naming import instance_logical_id

logger = getLogger(__name__)

OUTPUT_KEY_PREFIX = "DnsAddresssubnet"


class StackDeploymentError(RuntimeError):
    """The stack ended up in a failed or rolled back state."""


class _StackInProgress(Exception):
    pass


class DiscoveryEndpoint(BaseModel, frozen=True):
    subnet_id: str
    dns_name: str
    instance_id: Optional[str] = None
    state: Optional[str] = None
    private_ip: Optional[str] = None


def _client(service: str, region: str):
    return boto3.client(service, region_name=region)


def _describe_stack(stack_name: str, region: str) -> dict[str, Any]:
    cfn = _client("cloudformation", region)
    response = cfn.describe_stacks(StackName=stack_name)
    return response["Stacks"][0]


def _still_in_progress(retry_state: RetryCallState) -> dict[str, Any]:
    if retry_state.args:
        stack_name = retry_state.args[0]
    else:
        stack_name = retry_state.kwargs.get("stack_name")
    raise StackDeploymentError(
        f"Stack {stack_name} is still {retry_state.outcome.exception()} "
        f"after {retry_state.attempt_number} checks"
    )


@retry(
    retry=retry_if_exception_type(_StackInProgress),
    stop=stop_after_attempt(120),
    wait=wait_fixed(15),
    retry_error_callback=_still_in_progress,
)
def wait_for_stack(stack_name: str, region: str) -> dict[str, Any]:
    """Wait until the stack settles; returns its description once complete."""
    stack = _describe_stack(stack_name, region)
    status = stack["StackStatus"]
    logger.debug(f"Stack {stack_name} is {status}")

    if status.endswith("_IN_PROGRESS"):
        raise _StackInProgress(status)
    # a rolled back update or import left the stack on its previous template
    if status.endswith("_FAILED") or "ROLLBACK" in status:
        raise StackDeploymentError(
            f"Stack {stack_name} is {status}: {stack.get('StackStatusReason', '')}"
        )
    if status == "DELETE_COMPLETE":
        raise StackDeploymentError(f"Stack {stack_name} has been deleted")
    return stack


def _stack_instance_ids(stack_name: str, region: str) -> dict[str, str]:
    """Logical ID -> instance ID of every EC2 instance in the stack."""
    cfn = _client("cloudformation", region)
    response = cfn.describe_stack_resources(StackName=stack_name)
    return {
        resource["LogicalResourceId"]: resource["PhysicalResourceId"]
        for resource in response["StackResources"]
        if resource["ResourceType"] == "AWS::EC2::Instance"
        and resource.get("PhysicalResourceId")
    }


def _describe_instances(instance_ids: List[str], region: str) -> dict[str, dict]:
    if not instance_ids:
        return {}
    ec2 = _client("ec2", region)
    response = ec2.describe_instances(InstanceIds=instance_ids)
    instances = {}
    for reservation in response["Reservations"]:
        for instance in reservation["Instances"]:
            instances[instance["InstanceId"]] = instance
    return instances


def discovery_endpoints(
    stack_name: str, region: str, stack: dict[str, Any] | None = None
) -> List[DiscoveryEndpoint]:
    """The DNS name of each discovery server, with its instance state."""
    if stack is None:
        stack = _describe_stack(stack_name, region)

    addresses = {}
    for output in stack.get("Outputs", []):
        key = output["OutputKey"]
        if key.startswith(OUTPUT_KEY_PREFIX):
            subnet_id = "subnet-" + key[len(OUTPUT_KEY_PREFIX) :]
            addresses[subnet_id] = output["OutputValue"]

    if not addresses:
        logger.warning(f"Stack {stack_name} has no NDI discovery outputs")
        return []

    instance_ids = _stack_instance_ids(stack_name, region)
    instances = _describe_instances(list(instance_ids.values()), region)

    endpoints = []
    for subnet_id, dns_name in addresses.items():
        instance_id = instance_ids.get(instance_logical_id(subnet_id))
        instance = instances.get(instance_id, {}) if instance_id else {}
        endpoints.append(
            DiscoveryEndpoint(
                subnet_id=subnet_id,
                dns_name=dns_name,
                instance_id=instance_id,
                state=instance.get("State", {}).get("Name"),
                private_ip=instance.get("PrivateIpAddress"),
            )
        )
    return endpoints


def protected_instances(stack_name: str, region: str) -> List[str]:
    """Instances of the stack that still have termination protection on."""
    ec2 = _client("ec2", region)
    protected = []
    for instance_id in _stack_instance_ids(stack_name, region).values():
        response = ec2.describe_instance_attribute(
            InstanceId=instance_id, Attribute="disableApiTermination"
        )
        if response["DisableApiTermination"]["Value"]:
            protected.append(instance_id)
    return protected


def release_termination_protection(region: str, instance_ids: List[str]) -> None:
    ec2 = _client("ec2", region)
    for instance_id in instance_ids:
        ec2.modify_instance_attribute(
            InstanceId=instance_id, DisableApiTermination={"Value": False}
        )
        logger.info(f"Termination protection released on {instance_id}")


def print_endpoints(endpoints: List[DiscoveryEndpoint]) -> None:
    if not endpoints:
        print("\nNo NDI discovery servers found.\n")
        return

    table = Table(
        box=box.SQUARE,
        show_lines=False,
        title_style="bold",
        title_justify="left",
    )
    table.add_column("Subnet")
    table.add_column("Discovery Address")
    table.add_column("Instance ID")
    table.add_column("State")
    table.add_column("Private IP")
    for endpoint in endpoints:
        table.add_row(
            endpoint.subnet_id,
            endpoint.dns_name,
            endpoint.instance_id or "",
            endpoint.state or "",
            endpoint.private_ip or "",
        )
    print(table)
