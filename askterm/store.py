"""On-disk session persistence: one pretty-printed JSON file per session id."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path

from .errors import SessionError, StoreError
from .session import Session

DEFAULT_TRANSCRIPT_NAME = "gpt_transcript-"
SUFFIX = ".json"
PREVIEW_CHARS = 64

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def default_session_id() -> str:
    """Session id for this invocation: $ASK_SESSION, else the parent shell's pid."""
    explicit = os.environ.get("ASK_SESSION", "").strip()
    if explicit:
        return explicit
    return str(os.getppid())


def is_valid_session_id(session_id: str) -> bool:
    return bool(
        session_id and _SESSION_ID_RE.match(session_id) and session_id not in (".", "..")
    )


def validate_session_id(session_id: str) -> str:
    if not is_valid_session_id(session_id):
        raise ValueError(
            f"invalid session id {session_id!r}: use letters, digits, '.', '_' or '-'"
        )
    return session_id


def encode_session(session: Session) -> str:
    return json.dumps(session.to_dict(), indent=2, ensure_ascii=False) + "\n"


class SessionStore:
    """Loads and saves sessions under ``directory``.

    Files are named ``<transcript_name><id>.json``. Writes go through a temp
    file and os.replace() so a session file is never left half-written.
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        transcript_name: str = DEFAULT_TRANSCRIPT_NAME,
    ):
        self.directory = Path(directory) if directory else Path(tempfile.gettempdir())
        self.transcript_name = transcript_name

    def path_for(self, session_id: str) -> Path:
        validate_session_id(session_id)
        return self.directory / f"{self.transcript_name}{session_id}{SUFFIX}"

    def _paths(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        try:
            entries = list(self.directory.iterdir())
        except OSError as e:
            raise StoreError(f"could not read transcript directory {self.directory}: {e}")
        return sorted(
            p
            for p in entries
            if p.is_file()
            and p.name.startswith(self.transcript_name)
            and p.name.endswith(SUFFIX)
            and is_valid_session_id(self._id_from_path(p))
        )

    def _id_from_path(self, path: Path) -> str:
        return path.name[len(self.transcript_name) : -len(SUFFIX)]

    def list(self) -> list[str]:
        return [self._id_from_path(p) for p in self._paths()]

    def load(self, session_id: str) -> Session:
        """Return the persisted session, or a new empty one if none exists."""
        path = self.path_for(session_id)
        if not path.exists():
            return Session(id=session_id)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"could not read {path}: {e}")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreError(f"{path}: invalid JSON: {e}")
        try:
            session = Session.from_dict(data)
        except (SessionError, KeyError, TypeError, AttributeError) as e:
            raise StoreError(f"{path}: invalid session: {e}")
        session.id = session_id
        return session

    def save(self, session: Session) -> Path:
        path = self.path_for(session.id)
        payload = encode_session(session)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=self.directory
            )
        except OSError as e:
            raise StoreError(f"could not write {path}: {e}")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise StoreError(f"could not write {path}: {e}")
        session.dirty = False
        return path

    def clear(self, session_id: str) -> Session:
        """Truncate a session to empty history, keeping its id and model."""
        session = self.load(session_id)
        session.clear()
        self.save(session)
        return session

    def delete(self, session_id: str) -> bool:
        path = self.path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreError(f"could not delete {path}: {e}")
        return True

    def clear_all(self) -> int:
        """Delete every session file. Returns how many were removed."""
        removed = 0
        for path in self._paths():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StoreError(f"could not delete {path}: {e}")
            removed += 1
        return removed

    def summaries(self) -> list[tuple[str, str]]:
        """Return (id, preview) pairs; preview is the first user line."""
        result = []
        for session_id in self.list():
            try:
                session = self.load(session_id)
            except StoreError:
                result.append((session_id, "[error reading transcript]"))
                continue
            first_user = next((m for m in session.messages if m.role == "user"), None)
            if first_user is None:
                preview = "[empty conversation]"
            else:
                lines = first_user.text().splitlines()
                preview = lines[0][:PREVIEW_CHARS] if lines else "[empty first line]"
            result.append((session_id, preview))
        return result
