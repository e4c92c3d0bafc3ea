# artifacts.py
from __future__ import annotations

import json
import os
import shutil
import uuid
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import ArtifactExistsError
from .fingerprint import sha256_bytes, sha256_file
from .model import ArtifactRef, Job, JobResult, StepOutcome
from .ui.console import get_console

# ---------------------------------------------------------------------
# Artifact store
# ---------------------------------------------------------------------
# Reports written by scanners (bandit JSON, semgrep SARIF, ...) are kept per
# run, keyed "<job>/<artifact name>":
#
#   root/<run_id>/<job>/<name>
#   root/<run_id>/<job>/<name>.meta.json    sha256 + size
#
# Keys are write-once. Jobs never share a key prefix, so concurrent jobs
# never touch the same files.
# ---------------------------------------------------------------------

DEFAULT_ARTIFACT_DIR = ".guardrail/artifacts"
META_SUFFIX = ".meta.json"


def artifact_key(job_name: str, artifact_name: str) -> str:
    return f"{job_name}/{artifact_name}"


class ArtifactStore:
    """Interface: put(key, file-or-bytes) -> ref, get(ref) -> path."""

    def put(self, key: str, source: Union[Path, bytes]) -> ArtifactRef:
        raise NotImplementedError

    def get(self, ref: ArtifactRef) -> Path:
        raise NotImplementedError

    def list(self) -> List[ArtifactRef]:
        raise NotImplementedError


class LocalArtifactStore(ArtifactStore):
    def __init__(self, root: str | Path = DEFAULT_ARTIFACT_DIR, run_id: Optional[str] = None):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.root = Path(root).resolve() / self.run_id

    def _path_for(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if len(parts) != 2 or any(p in (".", "..") for p in parts):
            raise ValueError(f"Artifact key must look like '<job>/<name>', got: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, source: Union[Path, bytes]) -> ArtifactRef:
        dest = self._path_for(key)
        dest.parent.mkdir(parents=True, exist_ok=True)

        # O_EXCL makes the write-once check atomic
        try:
            fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            raise ArtifactExistsError(key) from None

        with os.fdopen(fd, "wb") as out:
            if isinstance(source, (bytes, bytearray)):
                out.write(source)
            else:
                with Path(source).open("rb") as src:
                    shutil.copyfileobj(src, out)

        digest = sha256_bytes(bytes(source)) if isinstance(source, (bytes, bytearray)) else sha256_file(dest)
        ref = ArtifactRef(key=key, path=str(dest), sha256=digest, size=dest.stat().st_size)
        dest.with_name(dest.name + META_SUFFIX).write_text(
            json.dumps(ref.to_dict(), sort_keys=True, indent=2), encoding="utf-8"
        )
        return ref

    def get(self, ref: ArtifactRef) -> Path:
        path = self._path_for(ref.key)
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {ref.key} ({path})")
        return path

    def list(self) -> List[ArtifactRef]:
        refs: List[ArtifactRef] = []
        if not self.root.exists():
            return refs
        for meta in sorted(self.root.glob(f"*/*{META_SUFFIX}")):
            data = json.loads(meta.read_text(encoding="utf-8"))
            refs.append(ArtifactRef(**data))
        return refs


# ---------------------------------------------------------------------
# Result collector
# ---------------------------------------------------------------------

def collect(job: Job, result: JobResult, store: ArtifactStore, *, repo_root: Path) -> Tuple[ArtifactRef, ...]:
    """
    Store every declared artifact of the job's executed steps, whatever the
    job's outcome. Best effort: a missing file is a warning, not an error
    (steps that *require* their artifact already failed in the runner).
    Output of cancelled steps is not trusted and is not collected.
    """
    console = get_console()
    outcomes = {s.name: s.outcome for s in result.steps}
    refs: List[ArtifactRef] = []

    for step in job.steps:
        if step.artifact is None:
            continue
        outcome = outcomes.get(step.name)
        if outcome is None or outcome in (StepOutcome.SKIPPED, StepOutcome.CANCELLED):
            continue

        src = (repo_root / (step.cwd or ".") / step.artifact).resolve()
        key = artifact_key(job.name, step.artifact_key)
        if not src.is_file():
            console.print_warning(f"[{job.name}] artifact '{step.artifact}' from step '{step.name}' not found")
            continue
        try:
            refs.append(store.put(key, src))
        except (OSError, ArtifactExistsError) as e:
            console.print_warning(f"[{job.name}] could not store artifact {key}: {e}")

    return tuple(refs)
