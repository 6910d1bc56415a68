"""
Review sessions stored under ``$UHD_HOME/sessions/<id>``.

Each session folder holds ``meta.json`` (jobs, images, cost, status), an optional
``selections.json`` written by the review UI and the generated files in ``images/``.
Ids are ``YYYYMMDD-HHMMSS-<slug>`` so sorting them by name sorts them by age.
"""

import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from loguru import logger

from uhd_skills.common import UHD_HOME, CamelModel, write_json
from uhd_skills.t2i.models import ModelId
from uhd_skills.t2i.naming import slugify_prompt


SessionStatus = Literal["generated", "reviewed", "refined", "finalized"]
SelectionStatus = Literal["keep", "reject", "regenerate"]

SESSION_SLUG_LENGTH = 30


class SessionError(ValueError):
    """A session could not be found or identified."""


class SessionImage(CamelModel):
    filename: str
    width: int = 0
    height: int = 0
    request_id: str
    url: str


class SessionJob(CamelModel):
    prompt: str
    model: ModelId
    num_images: int
    cost: float
    round: int
    params: dict[str, Any] = {}
    images: list[SessionImage] = []


class SessionMeta(CamelModel):
    id: str
    created_at: str
    command: str
    status: SessionStatus = "generated"
    jobs: list[SessionJob] = []
    total_cost: float = 0.0

    @property
    def current_round(self) -> int:
        return max((job.round for job in self.jobs), default=0)

    @property
    def image_count(self) -> int:
        return sum(len(job.images) for job in self.jobs)


class SelectionEntry(CamelModel):
    filename: str
    status: SelectionStatus
    new_prompt: str | None = None
    num_images: int | None = None


class SelectionSet(CamelModel):
    timestamp: str
    round: int
    selections: list[SelectionEntry]


def now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def generate_session_id(hint: str, now: datetime | None = None) -> str:
    """
    Session id from the current local time and a prompt slug.

    Examples:
        >>> generate_session_id("A cozy cafe at sunset", datetime(2025, 1, 2, 3, 4, 5))
        '20250102-030405-cozy-cafe-sunset'

    """
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")  # noqa: DTZ005
    return f"{stamp}-{slugify_prompt(hint)[:SESSION_SLUG_LENGTH]}"


class SessionStore:
    """File-backed session repository rooted at ``root`` (default ``$UHD_HOME/sessions``)."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or UHD_HOME / "sessions"

    def session_dir(self, session_id: str) -> Path:
        return self.root / session_id

    def images_dir(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "images"

    def unique_id(self, hint: str) -> str:
        base_id = generate_session_id(hint)
        if not self.session_dir(base_id).exists():
            return base_id
        suffix = 2
        while self.session_dir(f"{base_id}-{suffix}").exists():
            suffix += 1
        return f"{base_id}-{suffix}"

    def create(self, hint: str, command: str) -> SessionMeta:
        """Create the session folder and an empty ``meta.json``."""
        session_id = self.unique_id(hint)
        self.images_dir(session_id).mkdir(parents=True, exist_ok=True)
        meta = SessionMeta(id=session_id, created_at=now_iso(), command=command)
        self.write_meta(meta)
        logger.info("session_created", session=session_id, command=command)
        return meta

    def read_meta(self, session_id: str) -> SessionMeta:
        meta_path = self.session_dir(session_id) / "meta.json"
        if not meta_path.is_file():
            msg = f"Session not found: {session_id}"
            raise SessionError(msg)
        return SessionMeta.model_validate_json(meta_path.read_text(encoding="utf-8"))

    def write_meta(self, meta: SessionMeta) -> None:
        write_json(self.session_dir(meta.id) / "meta.json", meta)

    def read_selections(self, session_id: str) -> SelectionSet | None:
        path = self.session_dir(session_id) / "selections.json"
        if not path.is_file():
            return None
        return SelectionSet.model_validate_json(path.read_text(encoding="utf-8"))

    def write_selections(self, session_id: str, selections: SelectionSet) -> None:
        write_json(self.session_dir(session_id) / "selections.json", selections)

    def save_review(self, session_id: str, entries: list[SelectionEntry]) -> SelectionSet:
        """Persist selections from the review UI and mark the session reviewed."""
        meta = self.read_meta(session_id)
        selection_set = SelectionSet(
            timestamp=now_iso(), round=meta.current_round, selections=entries,
        )
        self.write_selections(session_id, selection_set)
        meta.status = "reviewed"
        self.write_meta(meta)
        logger.info("selections_saved", session=session_id, count=len(entries))
        return selection_set

    def list_ids(self) -> list[str]:
        """Session ids, newest first."""
        if not self.root.is_dir():
            return []
        return sorted(
            (
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir() and not entry.is_symlink() and not entry.name.startswith(".")
            ),
            reverse=True,
        )

    def latest(self) -> str | None:
        ids = self.list_ids()
        return ids[0] if ids else None

    def resolve(self, session_id: str | None = None) -> str:
        """
        Exact id, else a unique id prefix, else (with no id given) the newest session.

        Raises:
            SessionError: If nothing matches, a prefix is ambiguous or no sessions exist.

        """
        if session_id:
            ids = self.list_ids()
            if session_id in ids:
                return session_id
            matches = [s for s in ids if s.startswith(session_id)]
            if len(matches) == 1:
                return matches[0]
            if matches:
                msg = f"Ambiguous session prefix '{session_id}'. Matches: {', '.join(matches[:5])}"
                raise SessionError(msg)
            msg = f"Session not found: {session_id}"
            raise SessionError(msg)

        latest = self.latest()
        if latest is None:
            msg = "No sessions found. Run 'generate' first."
            raise SessionError(msg)
        return latest

    def delete(self, session_id: str) -> None:
        directory = self.session_dir(session_id)
        if not directory.is_dir():
            msg = f"Session not found: {session_id}"
            raise SessionError(msg)
        shutil.rmtree(directory)
        logger.info("session_deleted", session=session_id)

    def delete_all(self) -> int:
        count = len(self.list_ids())
        if self.root.exists():
            shutil.rmtree(self.root)
        logger.info("all_sessions_deleted", count=count)
        return count
