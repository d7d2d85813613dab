"""Filesystem helpers shared by the storage and config provisioners."""

import json
import os
import shutil
from datetime import datetime
from typing import Any


def write_json(path: str, data: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4, default=str)
        f.write("\n")


def backup_folder(root: str, tenant_id: str, now: datetime | None = None) -> str:
    """``{root}/tenant_{id}_{timestamp}``; suffixed if a backup already exists."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    path = os.path.join(root, f"tenant_{tenant_id}_{stamp}")
    candidate, n = path, 1
    while os.path.exists(candidate):
        candidate = f"{path}_{n}"
        n += 1
    return candidate


def copy_tree(src: str, dst: str) -> int:
    """Copy every file under ``src`` into ``dst``, symlinks as links; returns the file count."""
    shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
    return sum(len(files) for _, _, files in os.walk(dst))


def remove_tree(path: str) -> None:
    """Delete ``path`` children first; a missing path is not an error."""
    if not os.path.isdir(path):
        return
    for dirpath, dirnames, filenames in os.walk(path, topdown=False):
        for filename in filenames:
            os.unlink(os.path.join(dirpath, filename))
        for dirname in dirnames:
            full = os.path.join(dirpath, dirname)
            if os.path.islink(full):
                os.unlink(full)
            else:
                os.rmdir(full)
    os.rmdir(path)


def list_files(path: str) -> list[str]:
    if not os.path.isdir(path):
        return []
    return sorted(entry.name for entry in os.scandir(path) if entry.is_file())


def directory_usage(path: str) -> dict[str, int]:
    """Walk ``path``: total bytes of regular files, file count, directory count."""
    used = files = directories = 0
    if not os.path.isdir(path):
        return {"used": 0, "files": 0, "directories": 0}
    for dirpath, dirnames, filenames in os.walk(path):
        directories += len(dirnames)
        for filename in filenames:
            full = os.path.join(dirpath, filename)
            if os.path.isfile(full) and not os.path.islink(full):
                used += os.path.getsize(full)
                files += 1
    return {"used": used, "files": files, "directories": directories}
