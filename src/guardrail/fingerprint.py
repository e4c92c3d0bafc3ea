# fingerprint.py
# Content hashing shared by the tool cache and the artifact store.
from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Iterable, List


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_str(s: str) -> str:
    return sha256_bytes(s.encode("utf-8"))


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def relpath(p: Path, root: Path) -> str:
    return p.resolve().relative_to(root.resolve()).as_posix()


def resolve_globs(root: Path, patterns: Iterable[str]) -> List[Path]:
    """
    Expand file paths and globs ("requirements.txt", "**/requirements*.txt")
    relative to `root` into existing files, sorted and de-duplicated.
    """
    found = set()
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        direct = root / pat
        if direct.is_file():
            found.add(direct.resolve())
            continue
        for m in root.glob(pat):
            if m.is_file():
                found.add(m.resolve())
    return sorted(found)
