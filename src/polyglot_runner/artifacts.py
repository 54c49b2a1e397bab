from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from .languages import LanguageSpec

logger = logging.getLogger(__name__)

DEFAULT_SCRATCH_NAME = "polyglot-runner"


def new_token() -> str:
    """Return a fresh artifact token, usable as a file stem and a Java class name.

    Example:
        ```python
        token = new_token()  # "run_3f2a..."
        ```
    """
    return f"run_{uuid.uuid4().hex}"


@dataclass(slots=True)
class ArtifactSet:
    """Files owned by exactly one execution inside the scratch directory.

    Example:
        ```python
        artifacts = scratch.allocate(get_language("cpp"))
        ```
    """

    token: str
    scratch: Path
    source: Path
    binary: Path | None = None
    outdir: Path | None = None
    extra: list[Path] = field(default_factory=list)

    def template_values(self) -> dict[str, str]:
        """Return the placeholder values used to expand argv templates.

        Example:
            ```python
            values = artifacts.template_values()
            ```
        """
        return {
            "source": str(self.source),
            "binary": str(self.binary or ""),
            "outdir": str(self.outdir or ""),
            "classname": self.token,
            "scratch": str(self.scratch),
        }

    def paths(self) -> list[Path]:
        """Return every path this execution may have created.

        Example:
            ```python
            owned = artifacts.paths()
            ```
        """
        owned = [self.source]
        if self.binary is not None:
            owned.append(self.binary)
        if self.outdir is not None:
            owned.append(self.outdir)
        owned.extend(self.extra)
        return owned


class ScratchSpace:
    """Shared scratch directory handing out collision-free artifact sets.

    Concurrent executions never share a token, so no locking is needed.

    Example:
        ```python
        scratch = ScratchSpace("/tmp/polyglot-runner")
        ```
    """

    def __init__(self, root: str | Path | None = None) -> None:
        """Remember the scratch root; the directory is created on first use.

        Example:
            ```python
            scratch = ScratchSpace()
            ```
        """
        self.root = Path(root) if root else Path(tempfile.gettempdir()) / DEFAULT_SCRATCH_NAME

    def ensure(self) -> Path:
        """Create the scratch directory when missing and return it.

        Example:
            ```python
            root = scratch.ensure()
            ```
        """
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def allocate(self, language: LanguageSpec) -> ArtifactSet:
        """Reserve paths for one execution of ``language``.

        Example:
            ```python
            artifacts = scratch.allocate(get_language("java"))
            ```
        """
        root = self.ensure()
        token = new_token()
        artifacts = ArtifactSet(token=token, scratch=root, source=root / f"{token}{language.extension}")
        if language.uses_outdir:
            artifacts.outdir = root / token
        elif language.compile:
            artifacts.binary = root / token
        return artifacts

    def write_source(self, artifacts: ArtifactSet, code: str) -> Path:
        """Write source text to the execution's source file.

        Example:
            ```python
            scratch.write_source(artifacts, "print(1)")
            ```
        """
        if artifacts.outdir is not None:
            artifacts.outdir.mkdir(parents=True, exist_ok=True)
        # "x" mode: an existing file means a token collision, never overwrite it
        with open(artifacts.source, "x", encoding="utf-8") as handle:
            handle.write(code)
        return artifacts.source

    def release(self, artifacts: ArtifactSet) -> list[Path]:
        """Delete an execution's artifacts, logging and returning what could not be removed.

        Example:
            ```python
            leftovers = scratch.release(artifacts)
            ```
        """
        leftovers: list[Path] = []
        for path in artifacts.paths():
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to remove artifact %s: %s", path, exc)
                leftovers.append(path)
        return leftovers
