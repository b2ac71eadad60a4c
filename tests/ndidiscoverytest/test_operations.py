from datetime import datetime
from unittest import mock

import boto3
import pytest
from botocore.stub import Stubber
from tenacity import stop_after_attempt, wait_none

from ndidiscovery.operations import (
    StackDeploymentError,
    discovery_endpoints,
    print_endpoints,
    protected_instances,
    release_termination_protection,
    wait_for_stack,
)

from .helpers import REGION

STACK_NAME = "NdiDiscoveryStack"


def _stack(status: str, outputs=None) -> dict:
    stack = {
        "StackName": STACK_NAME,
        "CreationTime": datetime(2024, 1, 1),
        "StackStatus": status,
    }
    if outputs is not None:
        stack["Outputs"] = outputs
    return stack


def _resource(logical_id: str, physical_id: str, resource_type: str) -> dict:
    return {
        "StackName": STACK_NAME,
        "LogicalResourceId": logical_id,
        "PhysicalResourceId": physical_id,
        "ResourceType": resource_type,
        "Timestamp": datetime(2024, 1, 1),
        "ResourceStatus": "CREATE_COMPLETE",
    }


STACK_RESOURCES = {
    "StackResources": [
        _resource("Instancesubnet0aaa111", "i-0aaa", "AWS::EC2::Instance"),
        _resource("Instancesubnet0bbb222", "i-0bbb", "AWS::EC2::Instance"),
        _resource("PrivateHostedZone", "Z123", "AWS::Route53::HostedZone"),
    ]
}

OUTPUTS = [
    {
        "OutputKey": "DnsAddresssubnet0aaa111",
        "OutputValue": "discovery-subnet-0aaa111.ndi.private",
    },
    {
        "OutputKey": "DnsAddresssubnet0bbb222",
        "OutputValue": "discovery-subnet-0bbb222.ndi.private",
    },
]


@pytest.fixture()
def clients():
    cfn = boto3.client(
        "cloudformation",
        region_name=REGION,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    ec2 = boto3.client(
        "ec2",
        region_name=REGION,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    stubbers = {"cloudformation": Stubber(cfn), "ec2": Stubber(ec2)}
    by_service = {"cloudformation": cfn, "ec2": ec2}
    with mock.patch(
        "ndidiscovery.operations._client",
        side_effect=lambda service, region: by_service[service],
    ):
        with stubbers["cloudformation"], stubbers["ec2"]:
            yield stubbers
    for stubber in stubbers.values():
        stubber.assert_no_pending_responses()


def test_wait_for_stack_until_complete(clients):
    cfn = clients["cloudformation"]
    cfn.add_response(
        "describe_stacks",
        {"Stacks": [_stack("CREATE_IN_PROGRESS")]},
        {"StackName": STACK_NAME},
    )
    cfn.add_response(
        "describe_stacks",
        {"Stacks": [_stack("CREATE_COMPLETE", OUTPUTS)]},
        {"StackName": STACK_NAME},
    )

    stack = wait_for_stack.retry_with(wait=wait_none())(STACK_NAME, REGION)
    assert stack["StackStatus"] == "CREATE_COMPLETE"


@pytest.mark.parametrize(
    "status",
    [
        "CREATE_FAILED",
        "ROLLBACK_COMPLETE",
        "UPDATE_ROLLBACK_FAILED",
        # the requested update did not land
        "UPDATE_ROLLBACK_COMPLETE",
        "IMPORT_ROLLBACK_COMPLETE",
    ],
)
def test_wait_for_stack_failed(clients, status):
    clients["cloudformation"].add_response(
        "describe_stacks",
        {"Stacks": [_stack(status)]},
        {"StackName": STACK_NAME},
    )
    with pytest.raises(StackDeploymentError, match=status):
        wait_for_stack.retry_with(wait=wait_none())(STACK_NAME, REGION)


def test_wait_for_stack_gives_up_while_in_progress(clients):
    for _ in range(2):
        clients["cloudformation"].add_response(
            "describe_stacks",
            {"Stacks": [_stack("CREATE_IN_PROGRESS")]},
            {"StackName": STACK_NAME},
        )
    with pytest.raises(StackDeploymentError, match="still CREATE_IN_PROGRESS"):
        wait_for_stack.retry_with(stop=stop_after_attempt(2), wait=wait_none())(
            STACK_NAME, REGION
        )


@pytest.mark.parametrize("status", ["CREATE_COMPLETE", "UPDATE_COMPLETE"])
def test_wait_for_stack_settled(clients, status):
    clients["cloudformation"].add_response(
        "describe_stacks",
        {"Stacks": [_stack(status)]},
        {"StackName": STACK_NAME},
    )
    assert wait_for_stack(STACK_NAME, REGION)["StackStatus"] == status


def test_discovery_endpoints(clients):
    clients["cloudformation"].add_response(
        "describe_stack_resources", STACK_RESOURCES, {"StackName": STACK_NAME}
    )
    clients["ec2"].add_response(
        "describe_instances",
        {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-0aaa",
                            "State": {"Code": 16, "Name": "running"},
                            "PrivateIpAddress": "10.0.1.10",
                        },
                        {
                            "InstanceId": "i-0bbb",
                            "State": {"Code": 0, "Name": "pending"},
                        },
                    ]
                }
            ]
        },
        {"InstanceIds": ["i-0aaa", "i-0bbb"]},
    )

    endpoints = discovery_endpoints(
        STACK_NAME, REGION, stack=_stack("CREATE_COMPLETE", OUTPUTS)
    )

    assert [e.subnet_id for e in endpoints] == ["subnet-0aaa111", "subnet-0bbb222"]
    assert endpoints[0].dns_name == "discovery-subnet-0aaa111.ndi.private"
    assert endpoints[0].instance_id == "i-0aaa"
    assert endpoints[0].state == "running"
    assert endpoints[0].private_ip == "10.0.1.10"
    assert endpoints[1].state == "pending"
    assert endpoints[1].private_ip is None

    print_endpoints(endpoints)


def test_discovery_endpoints_without_outputs(clients):
    assert (
        discovery_endpoints(STACK_NAME, REGION, stack=_stack("CREATE_COMPLETE"))
        == []
    )


def test_protected_instances_and_release(clients):
    clients["cloudformation"].add_response(
        "describe_stack_resources", STACK_RESOURCES, {"StackName": STACK_NAME}
    )
    for instance_id, protected in (("i-0aaa", True), ("i-0bbb", False)):
        clients["ec2"].add_response(
            "describe_instance_attribute",
            {"InstanceId": instance_id, "DisableApiTermination": {"Value": protected}},
            {"InstanceId": instance_id, "Attribute": "disableApiTermination"},
        )
    clients["ec2"].add_response(
        "modify_instance_attribute",
        {},
        {"InstanceId": "i-0aaa", "DisableApiTermination": {"Value": False}},
    )

    instance_ids = protected_instances(STACK_NAME, REGION)
    assert instance_ids == ["i-0aaa"]

    release_termination_protection(REGION, instance_ids)
