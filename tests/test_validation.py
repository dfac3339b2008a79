from __future__ import annotations

import pytest

from machinist.types import MachineProviderSpec
from machinist.validation import outdated_fields


@pytest.fixture
def instance(make_instance):
    return make_instance(
        iam_profile="nodes",
        key_name="ops",
        root_device_size=20,
        subnet_id="subnet-a",
    )


def _spec(**overrides) -> MachineProviderSpec:
    values = {"instance_type": "m5.large", "iam_instance_profile": "nodes", "key_name": "ops"}
    values.update(overrides)
    return MachineProviderSpec(**values)


class TestOutdatedFields:
    def test_matching_spec_has_no_violations(self, instance) -> None:
        assert outdated_fields(_spec(root_device_size=20, subnet_id="subnet-a"), instance) == []

    def test_unset_root_size_and_subnet_are_ignored(self, instance) -> None:
        assert outdated_fields(_spec(root_device_size=None, subnet_id=None), instance) == []
        assert outdated_fields(_spec(root_device_size=0, subnet_id=""), instance) == []

    def test_instance_type_change(self, instance) -> None:
        errs = outdated_fields(_spec(instance_type="m5.xlarge"), instance)

        assert len(errs) == 1
        assert "instance type" in errs[0]
        assert "m5.large" in errs[0]
        assert "m5.xlarge" in errs[0]

    def test_violations_are_reported_in_field_order(self, instance) -> None:
        spec = _spec(
            instance_type="c5.large",
            iam_instance_profile="admins",
            key_name="other",
            root_device_size=50,
            subnet_id="subnet-b",
            public_ip=True,
        )

        errs = outdated_fields(spec, instance)

        assert [e.split(" cannot")[0] for e in errs] == [
            "instance type",
            "instance IAM profile",
            "SSH key name",
            "root volume size",
            "machine subnet ID",
            "public IP setting",
        ]

    def test_missing_key_name_matches_unset(self, make_instance) -> None:
        instance = make_instance(iam_profile="nodes", key_name=None)

        assert outdated_fields(_spec(key_name=None), instance) == []

    def test_key_name_removed(self, instance) -> None:
        errs = outdated_fields(_spec(key_name=None), instance)

        assert errs == ["SSH key name cannot be mutated from 'ops' to ''"]

    @pytest.mark.parametrize(
        ("public_ip", "observed", "expected"),
        [
            (None, None, []),
            (False, None, []),
            (True, "54.1.2.3", []),
            (True, None, ["public IP setting cannot be mutated from 'false' to 'true'"]),
            (None, "54.1.2.3", ["public IP setting cannot be mutated from 'true' to 'false'"]),
        ],
    )
    def test_public_ip(self, make_instance, public_ip, observed, expected) -> None:
        instance = make_instance(iam_profile="nodes", key_name="ops", public_ip=observed)

        assert outdated_fields(_spec(public_ip=public_ip), instance) == expected
