"""
Instance discovery: EC2 tag lookup or a static list from config.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger


@dataclass(frozen=True)
class InstanceDescriptor:
    name: str
    instance_class: str
    sequence: str
    region: str
    address: str

    @classmethod
    def build(cls, name: str, instance_class: str, region: str, address: str) -> "InstanceDescriptor":
        return cls(
            name=name,
            instance_class=instance_class,
            sequence=_sequence(name, instance_class),
            region=region,
            address=address,
        )


def _sequence(name: str, instance_class: str) -> str:
    """
    Suffix of the name after the class prefix, e.g. mysql-read03 -> 03.
    Names that do not start with the class are kept whole.
    """
    if instance_class and name.startswith(instance_class):
        return name[len(instance_class):]
    return name


def discover_instances(
    classes: Iterable[str],
    regions: Iterable[str],
    *,
    class_tag: str = "Class",
) -> List[InstanceDescriptor]:
    """
    Find running EC2 instances whose class tag is one of `classes`, region by
    region. A region that cannot be queried is logged and skipped.
    """
    wanted = list(classes)
    regions = list(regions)
    found: List[InstanceDescriptor] = []
    for region in regions:
        try:
            ec2 = boto3.client("ec2", region_name=region)
            paginator = ec2.get_paginator("describe_instances")
            pages = paginator.paginate(
                Filters=[
                    {"Name": f"tag:{class_tag}", "Values": wanted},
                    {"Name": "instance-state-name", "Values": ["running"]},
                ]
            )
            for page in pages:
                for reservation in page.get("Reservations", []):
                    for inst in reservation.get("Instances", []):
                        desc = _from_ec2(inst, region, class_tag)
                        if desc is not None:
                            found.append(desc)
        except (BotoCoreError, ClientError) as e:
            logger.warning("Instance discovery failed in {}: {}", region, e)
    logger.info("Discovered {} instance(s) in {}", len(found), regions)
    return found


def _from_ec2(inst: Dict[str, Any], region: str, class_tag: str) -> InstanceDescriptor | None:
    tags = {t["Key"]: t["Value"] for t in (inst.get("Tags") or [])}
    address = inst.get("PrivateIpAddress")
    if not address:
        logger.debug("Skipping {}: no private address", inst.get("InstanceId"))
        return None
    return InstanceDescriptor.build(
        name=tags.get("Name", inst.get("InstanceId", address)),
        instance_class=tags.get(class_tag, ""),
        region=region,
        address=address,
    )


def load_static_inventory(entries: Iterable[Dict[str, Any]]) -> List[InstanceDescriptor]:
    """
    Build descriptors from config entries of the form
    {name, class, region, address}.
    """
    out: List[InstanceDescriptor] = []
    for e in entries:
        out.append(
            InstanceDescriptor.build(
                name=str(e["name"]),
                instance_class=str(e.get("class", e.get("instance_class", ""))),
                region=str(e.get("region", "")),
                address=str(e["address"]),
            )
        )
    return out
