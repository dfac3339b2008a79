"""Immutable-field validation for machine updates."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from machinist.types import Instance, MachineProviderSpec


def outdated_fields(spec: MachineProviderSpec, instance: Instance) -> list[str]:
    """Compare desired spec to the observed instance.

    Returns one message per create-time-only field that differs, in a fixed
    order. An empty list means the update may proceed. ``root_device_size``
    and ``subnet_id`` are only checked when set to a non-empty, non-zero
    value; ``None``, ``0`` and ``""`` all mean "don't care".
    """
    errs: list[str] = []

    if spec.instance_type != instance.type:
        errs.append(f"instance type cannot be mutated from {instance.type!r} to {spec.instance_type!r}")

    if spec.iam_instance_profile != instance.iam_profile:
        errs.append(
            f"instance IAM profile cannot be mutated from "
            f"{instance.iam_profile!r} to {spec.iam_instance_profile!r}"
        )

    desired_key = spec.key_name or ""
    observed_key = instance.key_name or ""
    if desired_key != observed_key:
        errs.append(f"SSH key name cannot be mutated from {observed_key!r} to {desired_key!r}")

    if spec.root_device_size and spec.root_device_size != instance.root_device_size:
        errs.append(
            f"root volume size cannot be mutated from "
            f"{instance.root_device_size} to {spec.root_device_size}"
        )

    if spec.subnet_id and spec.subnet_id != instance.subnet_id:
        errs.append(f"machine subnet ID cannot be mutated from {instance.subnet_id!r} to {spec.subnet_id!r}")

    desired_public_ip = bool(spec.public_ip)
    if desired_public_ip != instance.has_public_ip:
        errs.append(
            f"public IP setting cannot be mutated from "
            f"{str(instance.has_public_ip).lower()!r} to {str(desired_public_ip).lower()!r}"
        )

    return errs
