from typing import Tuple

from ._naming import instance_name_tag

RESERVED_TAG_KEYS = ("Name", "Owner")


def unpack_tags(tags: str | None) -> Tuple[Tuple[str, str], ...]:
    tags_unpacked: list[Tuple[str, str]] = []
    if tags:
        try:
            tags_list = tags.split(";")
            for tag in tags_list:
                key, value = tag.split("=")
                tags_unpacked.append((key, value))
        except ValueError:
            raise ValueError(
                "Tags must be in the format 'key1=value1;key2=value2', "
                f"but instead got {tags}"
            )
    return tuple(tags_unpacked)


def instance_tags(
    instance_name: str,
    owner: str,
    subnet_id: str,
    extra_tags: Tuple[Tuple[str, str], ...] = (),
) -> Tuple[Tuple[str, str], ...]:
    """Tags of the discovery server deployed to `subnet_id`, Name and Owner first."""
    for key, _ in extra_tags:
        if key in RESERVED_TAG_KEYS:
            raise ValueError(f"Extra tags must not override the '{key}' tag")
    return (
        ("Name", instance_name_tag(instance_name, subnet_id)),
        ("Owner", owner),
        *extra_tags,
    )
