# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/host/files.py
#
# Idempotent filesystem primitives. Every function reports whether it changed
# anything so steps can say "already satisfied".

from __future__ import annotations

import grp
import os
import pwd
import shutil
from pathlib import Path
from typing import Iterable, Optional

from ..errors import IspStackError


def write_if_changed(path: Path, content: str, *, mode: Optional[int] = None) -> bool:
    path = Path(path)
    try:
        if path.read_text() == content:
            if mode is not None and (path.stat().st_mode & 0o7777) != mode:
                os.chmod(path, mode)
                return True
            return False
    except (OSError, UnicodeDecodeError):
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.ispstack-tmp")
    # a leftover temp file keeps its old mode under O_TRUNC
    tmp.unlink(missing_ok=True)
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644 if mode is None else mode)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    if mode is not None:
        os.chmod(tmp, mode)
    os.replace(tmp, path)
    return True


def ensure_symlink(source: Path, link: Path) -> bool:
    source, link = Path(source), Path(link)
    if link.is_symlink() and os.readlink(link) == str(source):
        return False
    link.parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.exists():
        if link.is_dir() and not link.is_symlink():
            raise IspStackError(f"refusing to replace directory {link} with a symlink")
        link.unlink()
    link.symlink_to(source)
    return True


def remove_path(path: Path) -> bool:
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def _ids(user: str, group: str) -> tuple[int, int]:
    try:
        uid = pwd.getpwnam(user).pw_uid
    except KeyError as e:
        raise IspStackError(f"unknown user '{user}'") from e
    try:
        gid = grp.getgrnam(group).gr_gid
    except KeyError as e:
        raise IspStackError(f"unknown group '{group}'") from e
    return uid, gid


def _walk(root: Path) -> Iterable[Path]:
    yield root
    if root.is_dir() and not root.is_symlink():
        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                yield Path(dirpath) / name


def ensure_ownership(root: Path, user: str, group: str) -> bool:
    """chown -R, touching only entries that differ."""
    root = Path(root)
    if not root.exists():
        raise IspStackError(f"{root} does not exist")
    uid, gid = _ids(user, group)
    changed = False
    for p in _walk(root):
        st = p.lstat()
        if st.st_uid != uid or st.st_gid != gid:
            os.lchown(p, uid, gid)
            changed = True
    return changed


def ensure_owner(path: Path, user: Optional[str] = None, group: Optional[str] = None) -> bool:
    """chown a single path; None leaves that side alone."""
    path = Path(path)
    st = path.stat()
    try:
        uid = pwd.getpwnam(user).pw_uid if user else st.st_uid
        gid = grp.getgrnam(group).gr_gid if group else st.st_gid
    except KeyError as e:
        raise IspStackError(f"unknown owner '{user or ''}:{group or ''}'") from e
    if (st.st_uid, st.st_gid) == (uid, gid):
        return False
    os.chown(path, uid, gid)
    return True


def ensure_mode(root: Path, mode: int) -> bool:
    """chmod -R on directories and regular files, skipping symlinks."""
    root = Path(root)
    if not root.exists():
        return False
    changed = False
    for p in _walk(root):
        if p.is_symlink():
            continue
        if (p.stat().st_mode & 0o7777) != mode:
            os.chmod(p, mode)
            changed = True
    return changed
