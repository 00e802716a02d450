"""
cluster_bootstrap.pki.fs

Filesystem helpers for secret material.

Responsibilities:
- Write private files atomically with their final owner and mode set before any data lands.
- Inspect existing files for the structural checks the readiness gate relies on.
"""

from __future__ import annotations

import contextlib
import os
import pwd
import stat
import tempfile
from pathlib import Path

PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644


def resolve_owner(account: str) -> tuple[int, int]:
    try:
        entry = pwd.getpwnam(account)
    except KeyError as e:
        raise LookupError(f"unknown account {account!r}") from e
    return entry.pw_uid, entry.pw_gid


def _write_atomic(path: Path, data: bytes, *, mode: int, owner: str | None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # mkstemp creates the file 0600, so the bytes below are never readable by others.
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        if owner is not None:
            uid, gid = resolve_owner(owner)
            os.fchown(fd, uid, gid)
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def write_private_file(path: Path, data: bytes, *, owner: str | None, mode: int = PRIVATE_MODE) -> None:
    if mode & 0o077:
        raise ValueError(f"mode {mode:o} would expose {path} to other accounts")
    _write_atomic(path, data, mode=mode, owner=owner)


def write_public_file(path: Path, data: bytes, *, mode: int = PUBLIC_MODE) -> None:
    _write_atomic(path, data, mode=mode, owner=None)


def restrict_file(path: Path, *, owner: str | None, mode: int = PRIVATE_MODE) -> None:
    # Tightening an existing file: chown first, then drop group/other bits.
    if owner is not None:
        uid, gid = resolve_owner(owner)
        os.chown(path, uid, gid)
    os.chmod(path, mode)


def non_empty(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except FileNotFoundError:
        return False


def private_file_problem(path: Path, *, owner: str | None) -> str | None:
    """
    Return why `path` is not a valid private file, or None when it is.
    """

    try:
        st = path.stat()
    except FileNotFoundError:
        return "missing"
    if not stat.S_ISREG(st.st_mode):
        return "not a regular file"
    if st.st_size == 0:
        return "empty"
    if stat.S_IMODE(st.st_mode) & 0o077:
        return f"mode {stat.S_IMODE(st.st_mode):04o} readable by other accounts"
    if owner is not None:
        try:
            uid, _ = resolve_owner(owner)
        except LookupError:
            return f"owner {owner!r} does not exist"
        if st.st_uid != uid:
            return f"owned by uid {st.st_uid}, expected {owner!r}"
    return None


# --- Module Notes -----------------------------------------------------------
# Ownership is skipped (owner=None) when the process cannot chown, e.g. in tests;
# mode restrictions always apply.
