"""Turn command-line device arguments into a validated target set.

Resolution Steps:
    1. Expand arguments: ``all`` seeds every whole disk; arguments with glob
       metacharacters are matched against the lsblk listing; anything else is
       a literal name normalized to ``/dev/<name>``.
    2. Apply protection rules, in order:
       a. user exclusions (exact name or canonical path)
       b. system disk (configured names, disks holding / or /boot, and any
          node that carries them itself, such as an LVM root volume),
          disabled by ``--force``
       c. special devices (optical, loop, ram), never overridable
       d. device-mapper nodes, disabled by ``--include-dm``
    3. Re-verify every survivor against a fresh lsblk listing.
    4. Drop duplicates, keeping first-seen order. Aliases of one node
       (/dev/dm-1 and /dev/mapper/vg0-data) count as the same target.

An empty result raises ``NoTargetsError``; the invocation must not go on with
zero targets.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, Optional, Sequence

from disk_wipefs.domain.models import (
    ProtectionRule,
    ResolvedTargets,
    device_basename,
    normalize_device,
)
from disk_wipefs.logging import LoggerFactory

from . import devices
from .exceptions import NoTargetsError


log = LoggerFactory.for_resolver()

ALL_SENTINEL = "all"
GLOB_CHARS = set("*?[")
SPECIAL_DEVICE_PATTERN = re.compile(r"^(sr|loop|ram|zram)\d*")
SPECIAL_DEVICE_TYPES = {"rom", "loop"}


def is_pattern(argument: str) -> bool:
    return any(char in GLOB_CHARS for char in argument)


def _class_end(pattern: str, start: int) -> int:
    """Index of the ``]`` closing the class opened at ``start``, or -1.

    A ``]`` right after ``[`` or ``[!`` is a literal member of the class.
    """
    index = start + 1
    if index < len(pattern) and pattern[index] == "!":
        index += 1
    if index < len(pattern) and pattern[index] == "]":
        index += 1
    return pattern.find("]", index)


def compile_pattern(pattern: str) -> re.Pattern:
    """Translate a shell-style pattern into an anchored regular expression.

    ``*`` matches any run of characters, ``?`` one character, and ``[...]``
    a character class. Everything else is literal. A pattern whose classes
    still do not compile (``sd[z-a]``) is matched as literal text.
    """
    out = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "*":
            out.append(".*")
        elif char == "?":
            out.append(".")
        elif char == "[":
            end = _class_end(pattern, index)
            if end == -1:
                out.append(re.escape(char))
            else:
                body = pattern[index + 1:end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                elif body.startswith("^"):
                    body = "\\" + body
                out.append(f"[{body}]")
                index = end
        else:
            out.append(re.escape(char))
        index += 1
    try:
        return re.compile("^" + "".join(out) + "$")
    except re.error as error:
        log.warning(f"Pattern {pattern} is not a valid glob ({error}); matching it literally")
        return re.compile("^" + re.escape(pattern) + "$")


def match_pattern(pattern: str, names: Iterable[str]) -> list[str]:
    """Names matching ``pattern``; a ``/dev/`` prefix on the pattern is ignored."""
    if pattern.startswith("/dev/"):
        pattern = pattern[len("/dev/"):]
    regex = compile_pattern(pattern)
    return [name for name in names if regex.match(name)]


def parse_exclusions(values: Optional[Iterable[str]]) -> list[str]:
    """Flatten repeated and comma-separated ``--exclude`` values."""
    exclusions: list[str] = []
    for value in values or []:
        for item in value.split(","):
            item = item.strip()
            if item and item not in exclusions:
                exclusions.append(item)
    return exclusions


def _matches_name_or_path(device: str, names: Iterable[str]) -> bool:
    base = device_basename(device)
    for name in names:
        if name == base or name == device:
            return True
    return False


def build_protection_rules(
    exclusions: Sequence[str] = (),
    system_disks: Sequence[str] = ("sda",),
    protect_root_disk: bool = True,
    force: bool = False,
    include_dm: bool = False,
    root_disks: Optional[Callable[[], Iterable[str]]] = None,
) -> list[ProtectionRule]:
    """Protection rules in evaluation order."""
    root_lookup = root_disks or devices.list_root_disks
    root_cache: dict[str, list[str]] = {}

    def is_system_disk(device: str) -> bool:
        if _matches_name_or_path(device, system_disks):
            return True
        if not protect_root_disk:
            return False
        if "disks" not in root_cache:
            root_cache["disks"] = list(root_lookup())
        if device in root_cache["disks"]:
            return True
        # Nodes that carry / or /boot themselves, such as an LVM root volume
        node = devices.get_device(device)
        return node is not None and devices.has_root_mountpoint(node)

    def is_special(device: str) -> bool:
        if SPECIAL_DEVICE_PATTERN.match(device_basename(device)):
            return True
        return devices.get_device_type(device) in SPECIAL_DEVICE_TYPES

    def is_device_mapper(device: str) -> bool:
        return device_basename(device).startswith("dm-") or device.startswith("/dev/mapper/")

    return [
        ProtectionRule(
            "user exclusion",
            lambda device: _matches_name_or_path(device, exclusions),
            overridable=False,
        ),
        ProtectionRule("system disk", is_system_disk, overridable=True, overridden=force),
        ProtectionRule("special device", is_special, overridable=False),
        ProtectionRule("device-mapper", is_device_mapper, overridable=True, overridden=include_dm),
    ]


def expand_arguments(arguments: Sequence[str]) -> list[str]:
    """Candidate device paths, before any protection rule."""
    candidates: list[str] = []
    if ALL_SENTINEL in arguments:
        candidates.extend(devices.list_whole_disks())
        log.debug(f"'all' expanded to: {' '.join(candidates) or '(none)'}")
        return candidates
    for argument in arguments:
        argument = argument.strip()
        if not argument:
            continue
        if is_pattern(argument):
            names = [device_basename(disk) for disk in devices.list_whole_disks()]
            matches = match_pattern(argument, names)
            if not matches:
                log.warning(f"Pattern {argument} matched no disks")
            candidates.extend(normalize_device(name) for name in matches)
        else:
            candidates.append(normalize_device(argument))
    return candidates


def resolve_targets(
    arguments: Sequence[str],
    rules: Sequence[ProtectionRule],
    include_dm: bool = False,
) -> ResolvedTargets:
    """Resolve arguments into the ordered, deduplicated target set.

    Raises:
        NoTargetsError: If nothing survives filtering
    """
    targets: list[str] = []
    rejected: list[tuple[str, str]] = []
    seen: set[str] = set()
    for candidate in expand_arguments(arguments):
        node = devices.get_device(candidate)
        if node is not None:
            candidate = devices.node_path(node)
        if candidate in seen:
            continue
        seen.add(candidate)
        rule = next((rule for rule in rules if rule.protects(candidate)), None)
        if rule is not None:
            log.info(f"Skipping {candidate}: protected by {rule.name} rule")
            rejected.append((candidate, rule.name))
            continue
        if not devices.is_whole_disk(candidate, include_dm=include_dm, force_refresh=True):
            log.warning(f"Resolved target {candidate} is not present or not a disk; skipping")
            rejected.append((candidate, "not a whole disk"))
            continue
        targets.append(candidate)

    if not targets:
        raise NoTargetsError(arguments, rejected)
    log.info(f"Final targets: {' '.join(targets)}")
    return ResolvedTargets(tuple(targets), tuple(rejected))
