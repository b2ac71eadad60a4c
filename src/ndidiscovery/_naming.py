"""Names derived from a subnet ID.

Every discovery server is keyed by the subnet it is deployed to; the
CloudFormation logical IDs, the DNS record and the Name tag all come from here.
"""


def subnet_suffix(subnet_id: str) -> str:
    """`subnet-0abc123` -> `0abc123`."""
    _, sep, suffix = subnet_id.partition("-")
    if not sep or not suffix:
        raise ValueError(f"Subnet ID '{subnet_id}' has no suffix")
    return suffix


def instance_logical_id(subnet_id: str) -> str:
    # also the resource cfn-signal reports to
    return f"Instancesubnet{subnet_suffix(subnet_id)}"


def dns_record_logical_id(subnet_id: str) -> str:
    return f"Dnssubnet{subnet_suffix(subnet_id)}"


def output_logical_id(subnet_id: str) -> str:
    return f"DnsAddresssubnet{subnet_suffix(subnet_id)}"


def discovery_record_name(subnet_id: str, domain: str) -> str:
    return f"discovery-{subnet_id}.{domain.rstrip('.')}"


def instance_name_tag(instance_name: str, subnet_id: str) -> str:
    return f"{instance_name}-{subnet_id}"
