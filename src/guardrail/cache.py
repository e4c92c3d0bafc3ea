# cache.py
from __future__ import annotations

import copy
import io
import json
import platform
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

from .fingerprint import json_dumps_stable, relpath, resolve_globs, sha256_file, sha256_str
from .model import Job

# ---------------------------------------------------------------------
# Tool cache
# ---------------------------------------------------------------------
# Scanner installs (pip caches, ~/.local/bin, ...) are slow to rebuild, so a
# job can declare `cache_dirs` to keep between runs. The key is:
#
#   hash(job name, cache_dirs, contents of cache_key_files, os/arch)
#
# so bumping requirements.txt invalidates the cached tools.
#
# Layout:
#   root/<job>/<key>.tar.gz
#   root/<job>/<key>.manifest.json
#
# Inside the tarball, cache_dirs[i] is stored under "<i>/" so entries outside
# the repo (e.g. "~/.cache/pip") restore to where they came from.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".guardrail/cache"
CACHE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str


def _resolve_entry(entry: str, repo_root: Path) -> Path:
    p = Path(entry).expanduser()
    return p if p.is_absolute() else (repo_root / p)


def compute_cache_key(job: Job, repo_root: Path) -> Tuple[str, Dict]:
    files = [
        (relpath(p, repo_root), sha256_file(p))
        for p in resolve_globs(repo_root, job.cache_key_files)
    ]
    payload = {
        "v": CACHE_FORMAT_VERSION,
        "job": job.name,
        "dirs": list(job.cache_dirs),
        "files": files,
        "platform": f"{platform.system()}-{platform.machine()}",
    }
    return sha256_str(json_dumps_stable(payload)), payload


class ToolCache:
    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()

    def _job_dir(self, job_name: str) -> Path:
        d = self.root / job_name
        d.mkdir(parents=True, exist_ok=True)
        return d

    def archive_path(self, job_name: str, key: str) -> Path:
        return self._job_dir(job_name) / f"{key}.tar.gz"

    def manifest_path(self, job_name: str, key: str) -> Path:
        return self._job_dir(job_name) / f"{key}.manifest.json"

    def restore(self, job: Job, *, repo_root: Path) -> CacheHit:
        if not job.cache_dirs:
            return CacheHit(hit=False, key="", reason="no cache_dirs specified")

        key = ""
        try:
            key, _payload = compute_cache_key(job, repo_root)
            archive = self.archive_path(job.name, key)
            if not archive.exists():
                return CacheHit(hit=False, key=key, reason="miss")

            with tarfile.open(archive, mode="r:gz") as tar:
                stored = tar.getmembers()
                for i, entry in enumerate(job.cache_dirs):
                    dest = _resolve_entry(entry, repo_root)
                    prefix = f"{i}/"
                    members = []
                    for m in stored:
                        if m.name.startswith(prefix):
                            m = copy.copy(m)
                            m.name = m.name[len(prefix):]
                            members.append(m)
                    if not members:
                        continue
                    dest.mkdir(parents=True, exist_ok=True)
                    if hasattr(tarfile, "data_filter"):
                        tar.extractall(dest, members=members, filter="data")
                    else:
                        tar.extractall(dest, members=members)
        except (OSError, tarfile.TarError) as e:
            return CacheHit(hit=False, key=key, reason=f"restore failed: {e}")

        return CacheHit(hit=True, key=key, reason="hit")

    def save(self, job: Job, *, repo_root: Path) -> str:
        key, payload = compute_cache_key(job, repo_root)
        archive = self.archive_path(job.name, key)
        tmp = archive.with_name(archive.name + ".tmp")

        try:
            with tarfile.open(tmp, mode="w:gz") as tar:
                for i, entry in enumerate(job.cache_dirs):
                    src = _resolve_entry(entry, repo_root)
                    if src.is_dir():
                        for f in sorted(src.rglob("*")):
                            if f.is_file():
                                tar.add(f, arcname=f"{i}/{f.relative_to(src).as_posix()}", recursive=False)
                manifest = json.dumps({"key": key, "payload": payload}, sort_keys=True, indent=2).encode("utf-8")
                info = tarfile.TarInfo(name="manifest.json")
                info.size = len(manifest)
                info.mtime = int(time.time())
                tar.addfile(info, io.BytesIO(manifest))
            tmp.replace(archive)
            self.manifest_path(job.name, key).write_text(
                json.dumps({"key": key, "payload": payload, "saved_at_unix": int(time.time())}, sort_keys=True, indent=2),
                encoding="utf-8",
            )
        finally:
            tmp.unlink(missing_ok=True)
        return key

    def prune(self, job_name: str, keep: int = 3) -> List[str]:
        """Keep only the newest `keep` archives for a job; returns removed keys."""
        d = self._job_dir(job_name)
        archives = sorted(d.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed = []
        for p in archives[keep:]:
            key = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (d / f"{key}.manifest.json").unlink(missing_ok=True)
            removed.append(key)
        return removed
