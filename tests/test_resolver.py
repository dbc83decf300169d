"""
Tests for disk_wipefs.storage.resolver module.

This test suite covers:
- Glob pattern translation and matching
- --exclude parsing
- Protection rule ordering and overrides
- Target resolution, re-verification and deduplication
"""

import json
from unittest.mock import Mock

import pytest

from disk_wipefs.storage import resolver
from disk_wipefs.storage.exceptions import NoTargetsError


def rules(**kwargs):
    kwargs.setdefault("system_disks", ["sda"])
    return resolver.build_protection_rules(**kwargs)


class TestPatterns:
    """Tests for compile_pattern() and match_pattern()."""

    NAMES = ["sda", "sdb", "sdc", "sdd", "sdaa", "nvme0n1", "nvme1n1"]

    def test_is_pattern(self):
        assert resolver.is_pattern("sd*")
        assert resolver.is_pattern("sd?")
        assert resolver.is_pattern("sd[b-d]")
        assert not resolver.is_pattern("sdb")
        assert not resolver.is_pattern("/dev/nvme0n1")

    def test_star(self):
        assert resolver.match_pattern("nvme*", self.NAMES) == ["nvme0n1", "nvme1n1"]

    def test_question_mark_matches_one_character(self):
        assert resolver.match_pattern("sd?", self.NAMES) == ["sda", "sdb", "sdc", "sdd"]

    def test_character_class(self):
        assert resolver.match_pattern("sd[b-c]", self.NAMES) == ["sdb", "sdc"]

    def test_negated_character_class(self):
        assert resolver.match_pattern("sd[!a]", self.NAMES) == ["sdb", "sdc", "sdd"]

    def test_pattern_is_anchored(self):
        assert resolver.match_pattern("sda", self.NAMES) == ["sda"]

    def test_dev_prefix_is_ignored(self):
        assert resolver.match_pattern("/dev/sd[cd]", self.NAMES) == ["sdc", "sdd"]

    def test_dot_is_literal(self):
        assert resolver.match_pattern("sd.", self.NAMES) == []

    def test_unterminated_class_is_literal(self):
        regex = resolver.compile_pattern("sd[")
        assert regex.match("sd[")
        assert not regex.match("sda")

    def test_bracket_as_first_class_member(self):
        assert resolver.match_pattern("sd[]b]", self.NAMES) == ["sdb"]
        assert resolver.match_pattern("sd[!]a]", self.NAMES) == ["sdb", "sdc", "sdd"]

    def test_backslash_in_class_is_literal(self):
        assert resolver.compile_pattern("sd[\\b]").match("sdb")
        assert resolver.compile_pattern("sd[\\b]").match("sd\\")

    @pytest.mark.parametrize("pattern", ["sd[!]", "sd[]", "sd[z-a]"])
    def test_unusable_class_is_matched_literally(self, pattern):
        regex = resolver.compile_pattern(pattern)
        assert regex.match(pattern)
        assert resolver.match_pattern(pattern, self.NAMES) == []

    def test_unusable_class_reaches_no_targets(self, fake_lsblk):
        with pytest.raises(NoTargetsError):
            resolver.resolve_targets(["sd[]"], rules())
        with pytest.raises(NoTargetsError):
            resolver.resolve_targets(["sd[z-a]"], rules())


class TestParseExclusions:
    """Tests for parse_exclusions() function."""

    def test_comma_separated(self):
        assert resolver.parse_exclusions(["sda,sdc"]) == ["sda", "sdc"]

    def test_repeated_and_deduplicated(self):
        assert resolver.parse_exclusions(["sda", "sdc, sda", " ,"]) == ["sda", "sdc"]

    def test_none(self):
        assert resolver.parse_exclusions(None) == []


class TestProtectionRules:
    """Tests for build_protection_rules()."""

    def test_rule_order(self, fake_lsblk):
        names = [rule.name for rule in rules()]
        assert names == ["user exclusion", "system disk", "special device", "device-mapper"]

    def test_user_exclusion_matches_name_or_path(self, fake_lsblk):
        exclusion = rules(exclusions=["sdc", "/dev/sdd"])[0]
        assert exclusion.protects("/dev/sdc")
        assert exclusion.protects("/dev/sdd")
        assert not exclusion.protects("/dev/sdcc")

    def test_user_exclusion_cannot_be_overridden(self, fake_lsblk):
        exclusion = rules(exclusions=["sdb"], force=True, include_dm=True)[0]
        assert exclusion.protects("/dev/sdb")

    def test_system_disk_disabled_by_force(self, fake_lsblk):
        system = rules(force=True, root_disks=lambda: [])[1]
        assert not system.active
        assert not system.protects("/dev/sda")

    def test_root_mount_disk_is_system_disk(self, fake_lsblk):
        system = rules(system_disks=[])[1]
        assert system.protects("/dev/sda")
        assert not system.protects("/dev/sdb")

    def test_root_mount_detection_can_be_disabled(self, fake_lsblk):
        system = rules(system_disks=[], protect_root_disk=False)[1]
        assert not system.protects("/dev/sda")

    def test_root_disks_looked_up_once(self, fake_lsblk):
        calls = []

        def root_disks():
            calls.append(1)
            return ["/dev/sdb"]

        system = rules(system_disks=[], root_disks=root_disks)[1]
        assert system.protects("/dev/sdb")
        assert not system.protects("/dev/sdc")
        assert len(calls) == 1

    @pytest.mark.parametrize("device", ["/dev/sr0", "/dev/loop0", "/dev/ram0", "/dev/zram1"])
    def test_special_devices_protected_whatever_flags(self, fake_lsblk, device):
        special = rules(force=True, include_dm=True)[2]
        assert special.protects(device)

    def test_device_mapper(self, fake_lsblk):
        dm = rules()[3]
        assert dm.protects("/dev/dm-0")
        assert dm.protects("/dev/mapper/vg0-data")
        assert not dm.protects("/dev/sdb")

    def test_device_mapper_disabled_by_include_dm(self, fake_lsblk):
        dm = rules(include_dm=True)[3]
        assert not dm.protects("/dev/dm-0")


class TestResolveTargets:
    """Tests for resolve_targets() function."""

    def test_all_with_exclusions(self, fake_lsblk):
        resolved = resolver.resolve_targets(["all"], rules(exclusions=["sda", "sdc"]))
        assert resolved.targets == ("/dev/sdb", "/dev/sdd")

    def test_all_skips_system_disk(self, fake_lsblk):
        resolved = resolver.resolve_targets(["all"], rules())
        assert resolved.targets == ("/dev/sdb", "/dev/sdc", "/dev/sdd")
        assert ("/dev/sda", "system disk") in resolved.rejected

    def test_system_disk_included_with_force(self, fake_lsblk):
        resolved = resolver.resolve_targets(["sda"], rules(force=True))
        assert resolved.targets == ("/dev/sda",)

    def test_system_disk_by_literal_name_rejected(self, fake_lsblk):
        with pytest.raises(NoTargetsError) as excinfo:
            resolver.resolve_targets(["/dev/sda"], rules())
        assert excinfo.value.rejected == [("/dev/sda", "system disk")]

    def test_special_devices_never_included(self, fake_lsblk):
        with pytest.raises(NoTargetsError):
            resolver.resolve_targets(["sr0", "loop0"], rules(force=True, include_dm=True))

    def test_duplicates_resolve_to_single_target(self, fake_lsblk):
        resolved = resolver.resolve_targets(["sdb", "/dev/sdb", "sd[b]"], rules())
        assert resolved.targets == ("/dev/sdb",)
        assert len(resolved) == 1

    def test_order_is_first_seen(self, fake_lsblk):
        resolved = resolver.resolve_targets(["sdd", "sd[b-d]"], rules())
        assert list(resolved) == ["/dev/sdd", "/dev/sdb", "/dev/sdc"]

    def test_pattern_respects_protection(self, fake_lsblk):
        resolved = resolver.resolve_targets(["sd?"], rules())
        assert "/dev/sda" not in resolved.targets

    def test_missing_device_rejected(self, fake_lsblk):
        resolved = resolver.resolve_targets(["sdb", "sdz"], rules())
        assert resolved.targets == ("/dev/sdb",)
        assert ("/dev/sdz", "not a whole disk") in resolved.rejected

    def test_partition_is_not_a_target(self, fake_lsblk):
        with pytest.raises(NoTargetsError):
            resolver.resolve_targets(["sdb1"], rules())

    def test_empty_target_set_is_fatal(self, fake_lsblk):
        with pytest.raises(NoTargetsError) as excinfo:
            resolver.resolve_targets(["all"], rules(exclusions=["sdb", "sdc", "sdd"]))
        assert excinfo.value.requested == ["all"]
        assert excinfo.value.exit_code == 1

    def test_pattern_without_matches(self, fake_lsblk):
        with pytest.raises(NoTargetsError):
            resolver.resolve_targets(["nvme*"], rules())

    def test_target_vanishing_before_verification(self, fake_lsblk, lsblk_devices):
        """A disk unplugged between expansion and re-verification is dropped."""
        without_sdc = [device for device in lsblk_devices if device["name"] != "sdc"]
        listings = iter([lsblk_devices, without_sdc])

        def lsblk(command, check=True, log_output=True):
            visible = next(listings, without_sdc)
            return Mock(returncode=0, stdout=json.dumps({"blockdevices": visible}), stderr="")

        fake_lsblk.run_command.side_effect = lsblk
        resolved = resolver.resolve_targets(["sdc", "sdd"], rules(root_disks=lambda: []))
        assert resolved.targets == ("/dev/sdd",)

    def test_lsblk_failure_means_no_matches(self, mocker):
        mocker.patch(
            "disk_wipefs.storage.devices.run_command", side_effect=OSError("lsblk not found")
        )
        with pytest.raises(NoTargetsError):
            resolver.resolve_targets(["all"], rules(root_disks=lambda: []))


class TestDeviceMapperTargets:
    """Tests for --include-dm targets, including a root filesystem on LVM."""

    @pytest.fixture
    def lvm_layout(self, lsblk_devices):
        root_pv = lsblk_devices[0]["children"][1]
        root_pv.update(mountpoint=None, fstype="LVM2_member")
        root_pv["children"] = [
            {"name": "vg-root", "kname": "dm-0", "path": "/dev/mapper/vg-root", "type": "lvm", "mountpoint": "/"}
        ]
        lsblk_devices[2]["children"] = [
            {"name": "vg0-data", "kname": "dm-1", "path": "/dev/mapper/vg0-data", "type": "lvm", "mountpoint": None}
        ]
        return lsblk_devices

    @pytest.mark.parametrize("argument", ["/dev/mapper/vg-root", "dm-0", "/dev/dm-0"])
    def test_root_volume_is_a_system_disk(self, fake_lsblk, lvm_layout, argument):
        with pytest.raises(NoTargetsError) as excinfo:
            resolver.resolve_targets([argument], rules(include_dm=True), include_dm=True)
        [(_device, rule)] = excinfo.value.rejected
        assert rule == "system disk"

    def test_root_volume_needs_force_as_well(self, fake_lsblk, lvm_layout):
        resolved = resolver.resolve_targets(
            ["/dev/mapper/vg-root"], rules(include_dm=True, force=True), include_dm=True
        )
        assert resolved.targets == ("/dev/mapper/vg-root",)

    def test_root_volume_detected_without_configured_names(self, fake_lsblk, lvm_layout):
        system = rules(system_disks=[], root_disks=lambda: [])[1]
        assert system.protects("/dev/mapper/vg-root")
        assert not system.protects("/dev/mapper/vg0-data")

    def test_kernel_name_resolves_to_mapper_path(self, fake_lsblk, lvm_layout):
        resolved = resolver.resolve_targets(["dm-1"], rules(include_dm=True), include_dm=True)
        assert resolved.targets == ("/dev/mapper/vg0-data",)

    def test_aliases_of_one_volume_are_one_target(self, fake_lsblk, lvm_layout):
        resolved = resolver.resolve_targets(
            ["/dev/mapper/vg0-data", "/dev/dm-1"], rules(include_dm=True), include_dm=True
        )
        assert resolved.targets == ("/dev/mapper/vg0-data",)

    def test_data_volume_rejected_without_include_dm(self, fake_lsblk, lvm_layout):
        with pytest.raises(NoTargetsError) as excinfo:
            resolver.resolve_targets(["/dev/mapper/vg0-data"], rules())
        assert excinfo.value.rejected == [("/dev/mapper/vg0-data", "device-mapper")]
