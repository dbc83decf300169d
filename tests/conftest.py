"""
Pytest configuration and shared fixtures for disk-wipefs tests.

This module provides common fixtures and utilities used across all test modules.
"""

import json
from typing import Any, Dict, List
from unittest.mock import Mock

import pytest
from loguru import logger

from disk_wipefs.pipeline.context import PipelineContext, WipeOptions
from disk_wipefs.storage import devices
from disk_wipefs.storage.commands import CommandRunner
from disk_wipefs.storage.gateway import SystemGateway
from disk_wipefs.storage.tools import ToolSet


# ==============================================================================
# Test doubles
# ==============================================================================


class RecordingRunner(CommandRunner):
    """CommandRunner that records commands instead of starting processes.

    ``responses`` maps a command prefix tuple to ``(returncode, stdout,
    stderr)``; the longest matching prefix wins. Unmatched commands succeed
    with no output.
    """

    def __init__(self, dry_run: bool = False, responses=None):
        self.sleeps: List[float] = []
        super().__init__(dry_run=dry_run, sleep=self.sleeps.append)
        self.responses = dict(responses or {})
        self.executed: List[tuple] = []

    def _execute(self, command):
        self.executed.append(command)
        matches = [prefix for prefix in self.responses if command[: len(prefix)] == prefix]
        if matches:
            return self.responses[max(matches, key=len)]
        return 0, "", ""

    @property
    def real_mutations(self):
        """Mutating commands that were actually executed (not dry-run)."""
        return [result for result in self.history if result.mutating and not result.dry_run]

    def commands(self, binary: str) -> List[tuple]:
        return [result.command for result in self.history if result.command[0] == binary]


class FakeGateway(SystemGateway):
    """SystemGateway over in-memory device state.

    Queries answer from the dictionaries below; mutating calls still go
    through the runner so they are recorded (or dry-run logged).
    """

    def __init__(
        self,
        runner,
        tools,
        sysfs_root,
        disks=(),
        partitions=None,
        mounts=None,
        swap=None,
        physical_volumes=(),
        logical_volumes=None,
        dm_holders=None,
        discard=False,
    ):
        super().__init__(runner, tools, sysfs_root=sysfs_root)
        self.disks = set(disks)
        self.partitions = dict(partitions or {})
        self.mounts = dict(mounts or {})
        self.swap = dict(swap or {})
        self.physical_volumes = list(physical_volumes)
        self.logical_volumes = dict(logical_volumes or {})
        self.dm_holders = dict(dm_holders or {})
        self.discard = discard

    def is_whole_disk(self, device, include_dm=False):
        return device in self.disks

    def describe(self, device):
        return device

    def list_partitions(self, device):
        return list(self.partitions.get(device, []))

    def list_mounts(self, device):
        return list(self.mounts.get(device, []))

    def list_swap(self, device):
        return list(self.swap.get(device, []))

    def list_physical_volumes(self):
        return list(self.physical_volumes)

    def list_logical_volumes(self, vg):
        return list(self.logical_volumes.get(vg, []))

    def list_dm_holders(self, device):
        return list(self.dm_holders.get(device, []))

    def supports_discard(self, device):
        return self.discard


# ==============================================================================
# Tool and pipeline fixtures
# ==============================================================================


@pytest.fixture
def all_tools() -> ToolSet:
    """ToolSet where every tool is installed under its plain name."""
    return ToolSet.probe(which=lambda name: name)


@pytest.fixture
def essential_tools() -> ToolSet:
    """ToolSet with only the required tools installed."""
    return ToolSet(
        lsblk="lsblk", wipefs="wipefs", sgdisk="sgdisk", partprobe="partprobe", blockdev="blockdev"
    )


@pytest.fixture
def sysfs_root(tmp_path):
    root = tmp_path / "sys"
    (root / "block").mkdir(parents=True)
    return root


@pytest.fixture
def make_context(all_tools, sysfs_root):
    """Factory building a PipelineContext over a FakeGateway."""

    def factory(runner, options=None, tools=None, **gateway_state):
        tools = tools or all_tools
        gateway = FakeGateway(runner, tools, sysfs_root, **gateway_state)
        return PipelineContext(
            runner=runner, gateway=gateway, tools=tools, options=options or WipeOptions()
        )

    return factory


# ==============================================================================
# lsblk fixtures
# ==============================================================================


def _disk(name: str, size: int, children=None, model="", tran="sata") -> Dict[str, Any]:
    return {
        "name": name,
        "kname": name,
        "path": f"/dev/{name}",
        "type": "disk",
        "size": size,
        "model": model,
        "vendor": "ATA",
        "tran": tran,
        "rm": False,
        "fstype": None,
        "mountpoint": None,
        "pkname": None,
        "children": children or [],
    }


def _part(name: str, parent: str, mountpoint=None, fstype="ext4") -> Dict[str, Any]:
    return {
        "name": name,
        "kname": name,
        "path": f"/dev/{name}",
        "type": "part",
        "size": 1073741824,
        "model": None,
        "vendor": None,
        "tran": None,
        "rm": False,
        "fstype": fstype,
        "mountpoint": mountpoint,
        "pkname": parent,
    }


@pytest.fixture
def lsblk_devices() -> List[Dict[str, Any]]:
    """
    Four SATA disks plus an optical drive and a loop device.

    sda holds the running system; sdb has two mounted partitions and a swap
    partition; sdc and sdd are blank.
    """
    return [
        _disk(
            "sda",
            256060514304,
            children=[
                _part("sda1", "sda", mountpoint="/boot/efi", fstype="vfat"),
                _part("sda2", "sda", mountpoint="/"),
            ],
            model="System SSD",
        ),
        _disk(
            "sdb",
            4000787030016,
            children=[
                _part("sdb1", "sdb", mountpoint="/mnt/data1"),
                _part("sdb2", "sdb", mountpoint="/mnt/data2"),
                _part("sdb3", "sdb", mountpoint="[SWAP]", fstype="swap"),
            ],
            model="Data HDD",
        ),
        _disk("sdc", 4000787030016, model="Data HDD"),
        _disk("sdd", 4000787030016, model="Data HDD"),
        {
            "name": "sr0",
            "kname": "sr0",
            "path": "/dev/sr0",
            "type": "rom",
            "size": 1073741312,
            "model": "DVD-RW",
            "rm": True,
            "mountpoint": None,
        },
        {
            "name": "loop0",
            "kname": "loop0",
            "path": "/dev/loop0",
            "type": "loop",
            "size": 67108864,
            "rm": False,
            "mountpoint": "/snap/core/1",
        },
    ]


@pytest.fixture(autouse=True)
def reset_lsblk_cache():
    devices.clear_cache()
    yield
    devices.clear_cache()


@pytest.fixture
def fake_lsblk(mocker, lsblk_devices) -> Mock:
    """Patch lsblk to print ``lsblk_devices``; reassign ``.devices`` to change it."""
    state = Mock()
    state.devices = lsblk_devices

    def run_command(command, check=True, log_output=True):
        return Mock(
            returncode=0,
            stdout=json.dumps({"blockdevices": state.devices}),
            stderr="",
        )

    state.run_command = mocker.patch(
        "disk_wipefs.storage.devices.run_command", side_effect=run_command
    )
    return state


# ==============================================================================
# Logging fixtures
# ==============================================================================


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    logger.remove()
    records: List[dict] = []

    def sink(message):
        records.append(message.record)

    handler_id = logger.add(sink, level="TRACE", enqueue=False)
    yield records
    logger.remove(handler_id)
