"""Build a ChangePayload from the state of a git working tree."""

from __future__ import annotations

from pathlib import Path

from guardian.core.change import ChangedFile, ChangePayload
from guardian.core.log import logger
from guardian.core.runner import Runner

# Files larger than this are listed without their content
MAX_CONTENT_BYTES = 1024 * 1024


def _diff_args(against: str | None) -> str:
    # Staged changes by default: what the next commit would contain
    return against if against else "--cached"


def read_content(path: Path, size: int | None) -> str | None:
    """Text of a working-tree file; None for binary or oversized files."""
    if size is None or size > MAX_CONTENT_BYTES:
        return None
    data = path.read_bytes()
    if b"\0" in data:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def collect_changes(
    workdir: Path,
    against: str | None = None,
    runner: Runner | None = None,
) -> ChangePayload:
    """Collect the diff, touched files and file listing of a repository.

    Args:
        workdir: Repository working tree
        against: Ref to diff the working tree against; staged
            changes when None
        runner: Command runner (a new one when None)

    Returns:
        ChangePayload with the unified diff, the touched files with
        their working-tree content, and every tracked or untracked
        (not ignored) path; deleted files are omitted from files

    Raises:
        invoke.UnexpectedExit: git failed (not a repository, bad ref)
    """
    workdir = Path(workdir)
    runner = runner or Runner()
    args = _diff_args(against)

    diff = runner.execute(
        f"git diff --no-color --no-ext-diff {args}", cwd=workdir
    ).stdout
    names = runner.execute(
        f"git diff --name-only --diff-filter=d {args}", cwd=workdir
    ).stdout
    listing = runner.execute(
        "git ls-files --cached --others --exclude-standard", cwd=workdir
    ).stdout

    files = []
    for name in names.splitlines():
        name = name.strip()
        if not name:
            continue
        path = workdir / name
        size = path.stat().st_size if path.is_file() else None
        files.append(ChangedFile(
            path=name, size_bytes=size, content=read_content(path, size)
        ))

    tree = tuple(sorted({line.strip() for line in listing.splitlines()} - {""}))

    logger.debug(
        "Collected changes",
        workdir=str(workdir),
        against=against or "staged",
        files=len(files),
        tree_files=len(tree),
        diff_bytes=len(diff),
    )
    return ChangePayload(text=diff, files=tuple(files), tree=tree)
