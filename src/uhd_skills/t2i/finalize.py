"""Copy the images a reviewer kept out of a session."""

import shutil
from pathlib import Path

from loguru import logger

from uhd_skills.t2i.session import SessionStore


def unique_destination(dest_dir: Path, filename: str) -> Path:
    """
    ``dest_dir/filename``, or ``stem-N.ext`` with the first free N when it exists.

    Examples:
        >>> unique_destination(Path("/nonexistent"), "cat.png")
        PosixPath('/nonexistent/cat.png')

    """
    name = Path(filename).name
    candidate = dest_dir / name
    counter = 1
    while candidate.exists():
        candidate = dest_dir / f"{Path(name).stem}-{counter}{Path(name).suffix}"
        counter += 1
    return candidate


def finalize_session(store: SessionStore, session_id: str, dest: Path) -> list[Path]:
    """
    Copy kept images into ``dest`` and mark the session finalized.

    Without saved selections every image of the session is copied. Files are de-duplicated,
    never overwrite existing files in ``dest`` and missing sources are skipped with a
    warning.

    Returns:
        Destination paths in copy order.

    """
    meta = store.read_meta(session_id)
    selections = store.read_selections(session_id)
    images_dir = store.images_dir(session_id)

    if selections is not None:
        names = [Path(s.filename).name for s in selections.selections if s.status == "keep"]
    else:
        names = [Path(img.filename).name for job in meta.jobs for img in job.images]

    dest.mkdir(parents=True, exist_ok=True)
    copied: list[Path] = []
    for name in dict.fromkeys(names):
        source = images_dir / name
        if not source.is_file():
            logger.warning("finalize_image_missing", session=session_id, filename=name)
            continue
        destination = unique_destination(dest, name)
        shutil.copy2(source, destination)
        copied.append(destination)

    meta.status = "finalized"
    store.write_meta(meta)
    logger.info("session_finalized", session=session_id, copied=len(copied), dest=str(dest))
    return copied
