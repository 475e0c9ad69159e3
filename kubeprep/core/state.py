#!/usr/bin/env python3
"""
Desired-state helpers

Each helper describes what a file should contain and computes whether the
host already matches, so workflows only touch what differs.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..utils.helpers import read_file

SWAP_ENTRY = re.compile(r'\sswap\s')

@dataclass
class ManagedFile:
    """A system file whose full content is owned by kubeprep"""
    path: str
    content: str
    mode: int = 0o644

    @property
    def location(self) -> Path:
        return Path(self.path).expanduser()

    def current(self) -> Optional[str]:
        return read_file(self.location)

    def in_sync(self) -> bool:
        return self.current() == self.content

def lines_file(path: str, lines, mode: int = 0o644) -> ManagedFile:
    """ManagedFile holding one entry per line"""
    return ManagedFile(path=path, content="".join(f"{line}\n" for line in lines), mode=mode)

def comment_swap_entries(fstab: str) -> str:
    """Comment out active swap entries, leaving everything else untouched"""
    result = []
    for line in fstab.splitlines(keepends=True):
        if SWAP_ENTRY.search(line) and not line.lstrip().startswith('#'):
            line = f"#{line}"
        result.append(line)
    return "".join(result)

def enable_systemd_cgroup(containerd_config: str) -> str:
    """Switch the runc cgroup driver to systemd"""
    return containerd_config.replace("SystemdCgroup = false", "SystemdCgroup = true")

def ensure_profile_line(profile: Path, line: str, marker: str) -> bool:
    """
    Append ``line`` to a shell profile unless ``marker`` already appears in it.

    Returns True when the profile was modified.
    """
    content = read_file(profile) or ""
    if marker in content:
        return False

    prefix = "\n" if content and not content.endswith("\n") else ""
    profile.parent.mkdir(parents=True, exist_ok=True)
    with open(profile, 'a', encoding='utf-8') as f:
        f.write(f"{prefix}{line}\n")
    return True

__all__ = [
    'ManagedFile', 'lines_file', 'comment_swap_entries', 'enable_systemd_cgroup',
    'ensure_profile_line'
]
