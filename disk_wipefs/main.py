import argparse
import os
from pathlib import Path

from disk_wipefs import __version__
from disk_wipefs.config import settings
from disk_wipefs.domain.models import ExecutionMode
from disk_wipefs.logging import LoggerFactory, operation_context, setup_logging
from disk_wipefs.pipeline.context import PipelineContext, WipeOptions
from disk_wipefs.pipeline.interrupts import InterruptFlag
from disk_wipefs.pipeline.orchestrator import Orchestrator
from disk_wipefs.storage.exceptions import PrivilegeError, WipeError
from disk_wipefs.storage.resolver import build_protection_rules, parse_exclusions
from disk_wipefs.storage.tools import ToolSet, check_tools
from disk_wipefs.ui.prompts import target_confirmer

EXIT_OK = 0
EXIT_INTERRUPTED = 130


def build_parser():
    parser = argparse.ArgumentParser(
        prog="disk-wipefs",
        description=(
            "Remove partition tables, filesystem signatures, RAID superblocks, "
            "LVM and device-mapper state from whole disks."
        ),
    )
    parser.add_argument(
        "targets",
        nargs="+",
        metavar="DEVICE",
        help="Disk names (sdb, /dev/nvme0n1), shell patterns (sd[b-d]) or 'all'",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--auto", action="store_true", help="Do not ask for confirmation per disk")
    mode.add_argument(
        "--manual", action="store_true", help="Ask for confirmation per disk (default)"
    )
    parser.add_argument(
        "--force",
        "--force-sda",
        dest="force",
        action="store_true",
        help="Allow the system disk to be targeted",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="NAME[,NAME...]",
        help="Never touch these disks (repeatable)",
    )
    parser.add_argument(
        "--include-dm", action="store_true", help="Allow device-mapper nodes as targets"
    )
    parser.add_argument("--zap-ceph", action="store_true", help="Run ceph-volume lvm zap")
    parser.add_argument("--zap-zfs", action="store_true", help="Clear ZFS labels")
    parser.add_argument(
        "--discard", action="store_true", help="Discard all blocks when the disk supports it"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Show what would be done without changing anything"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log command output")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def select_mode(args) -> ExecutionMode:
    if args.dry_run:
        return ExecutionMode.PREVIEW
    if args.auto:
        return ExecutionMode.AUTOMATIC
    return ExecutionMode.INTERACTIVE


def require_root() -> None:
    euid = os.geteuid()
    if euid != 0:
        raise PrivilegeError(euid)


def main(argv=None, tools=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    exclusions = parse_exclusions(args.exclude)
    options = WipeOptions.from_settings(
        mode=select_mode(args),
        zap_ceph=args.zap_ceph,
        zap_zfs=args.zap_zfs,
        discard=args.discard,
        include_dm=args.include_dm,
        force=args.force,
        exclusions=tuple(exclusions),
    )
    interrupt = InterruptFlag()

    try:
        require_root()
        tools = tools or ToolSet.probe()
        check_tools(tools)
        rules = build_protection_rules(
            exclusions=exclusions,
            system_disks=settings.get_list("system_disks"),
            protect_root_disk=settings.get_bool("protect_root_disk", True),
            force=options.force,
            include_dm=options.include_dm,
        )
        ctx = PipelineContext.create(options, tools)
        confirm = target_confirmer(
            ctx.gateway, timeout=options.prompt_timeout, interrupt=interrupt
        )
        orchestrator = Orchestrator(ctx, rules, confirm=confirm, interrupt=interrupt)
        with interrupt.installed(), operation_context("wipe", mode=options.mode.value):
            summary = orchestrator.run(args.targets)
    except WipeError as error:
        log.error(str(error))
        return error.exit_code
    except KeyboardInterrupt:
        log.warning("Interrupted by user")
        return EXIT_INTERRUPTED

    if summary.interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
