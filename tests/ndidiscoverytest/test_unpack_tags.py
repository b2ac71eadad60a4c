import pytest

from ndidiscovery._unpack_tags import instance_tags, unpack_tags


def test_unpack_tags():
    assert unpack_tags(None) == ()
    assert unpack_tags("") == ()
    assert unpack_tags("a=1;b=2") == (("a", "1"), ("b", "2"))


def test_unpack_tags_malformed():
    with pytest.raises(ValueError, match="a=1;b"):
        unpack_tags("a=1;b")


def test_instance_tags_name_and_owner_first():
    assert instance_tags(
        "ndi-discovery", "media-team", "subnet-0aaa111", (("Env", "prod"),)
    ) == (
        ("Name", "ndi-discovery-subnet-0aaa111"),
        ("Owner", "media-team"),
        ("Env", "prod"),
    )


def test_extra_tags_cannot_override_owner():
    with pytest.raises(ValueError, match="Owner"):
        instance_tags("ndi", "media-team", "subnet-1", (("Owner", "someone"),))
