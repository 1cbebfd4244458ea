"""
WorkspaceStore: the single writer of workspace state, persisted as one named blob in SQLite (WAL mode).
"""

import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable
from contextlib import contextmanager

from pydantic import BaseModel, ValidationError

from deeptutor.shared.config import settings
from deeptutor.shared.exceptions import (
    SectionNotFoundError,
    WorkspaceNotFoundError,
    WorkspaceUpdateError,
)
from deeptutor.shared.logging import get_logger
from deeptutor.workspace.metrics import compute_coverage
from deeptutor.workspace.models import Section, Workspace

logger = get_logger(__name__)

_UPDATABLE_FIELDS = set(Workspace.model_fields) - {"coverage_stats"}


def _as_data(value: Any) -> Any:
    """Turn models nested anywhere in an update into plain data for re-validation."""
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, (list, tuple)):
        return [_as_data(v) for v in value]
    if isinstance(value, dict):
        return {k: _as_data(v) for k, v in value.items()}
    return value


class WorkspaceStore:
    """Holds all workspaces and the active selection; every mutation is persisted."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        blob_name: Optional[str] = None,
        persist_attachments: Optional[bool] = None,
    ):
        self.db_path = Path(db_path or settings.storage.db_path)
        self.blob_name = blob_name or settings.storage.blob_name
        self.persist_attachments = (
            settings.storage.persist_attachments if persist_attachments is None else persist_attachments
        )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Most recently added first
        self._order: List[str] = []
        self._workspaces: Dict[str, Workspace] = {}
        self._active_workspace_id = ""

        self._init_database()
        self._load()

    def _init_database(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS client_state (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper error handling."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Persistence

    def _load(self):
        """Load the persisted blob once; it is the source of truth from then on."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM client_state WHERE name = ?",
                (self.blob_name,)
            ).fetchone()

        if not row:
            return

        try:
            blob = json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.warning(f"Persisted state '{self.blob_name}' is corrupt, starting empty: {e}")
            return

        if not isinstance(blob, dict):
            logger.warning(f"Persisted state '{self.blob_name}' has an unexpected shape, starting empty")
            return

        for raw in blob.get("workspaces", []):
            try:
                workspace = self._recompute(Workspace.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable persisted workspace: {e.error_count()} errors")
                continue
            self._workspaces[workspace.id] = workspace
            self._order.append(workspace.id)

        active_id = blob.get("activeWorkspaceId", "")
        self._active_workspace_id = active_id if active_id in self._workspaces else ""
        logger.info(f"Loaded {len(self._order)} workspaces from '{self.blob_name}'")

    def _persist(self):
        """Rewrite the blob after a mutation."""
        exclude = None if self.persist_attachments else {"attachment"}
        blob = {
            "workspaces": [
                self._workspaces[ws_id].model_dump(mode="json", exclude=exclude)
                for ws_id in self._order
            ],
            "activeWorkspaceId": self._active_workspace_id,
        }
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO client_state (name, value, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(name) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP""",
                (self.blob_name, json.dumps(blob))
            )

    # ------------------------------------------------------------------
    # Reads

    @property
    def workspaces(self) -> List[Workspace]:
        """All workspaces, most recently added first."""
        return [self._workspaces[ws_id].model_copy(deep=True) for ws_id in self._order]

    @property
    def active_workspace_id(self) -> str:
        return self._active_workspace_id

    def get_workspace(self, workspace_id: str) -> Workspace:
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(f"Unknown workspace: {workspace_id}")
        return workspace.model_copy(deep=True)

    def get_active_workspace(self) -> Optional[Workspace]:
        if not self._active_workspace_id:
            return None
        return self.get_workspace(self._active_workspace_id)

    # ------------------------------------------------------------------
    # Mutations

    @staticmethod
    def _recompute(workspace: Workspace) -> Workspace:
        return workspace.model_copy(update={"coverage_stats": compute_coverage(workspace.sections)})

    def add_workspace(self, workspace: Workspace) -> Workspace:
        """Add a workspace at the front and make it active."""
        workspace = self._recompute(Workspace.model_validate(_as_data(workspace)))
        if workspace.id in self._workspaces:
            self._order.remove(workspace.id)
        self._workspaces[workspace.id] = workspace
        self._order.insert(0, workspace.id)
        self._active_workspace_id = workspace.id
        self._persist()
        return workspace.model_copy(deep=True)

    def set_workspaces(self, workspaces: List[Workspace]):
        """Replace the whole collection (used for a full reset)."""
        validated = [self._recompute(Workspace.model_validate(_as_data(ws))) for ws in workspaces]
        self._workspaces = {ws.id: ws for ws in validated}
        self._order = [ws.id for ws in validated]
        if self._active_workspace_id not in self._workspaces:
            self._active_workspace_id = ""
        self._persist()

    def clear(self):
        """Global purge of every workspace."""
        self._active_workspace_id = ""
        self.set_workspaces([])

    def set_active_workspace(self, workspace_id: str):
        """Select a workspace; an empty id deselects."""
        if workspace_id and workspace_id not in self._workspaces:
            raise WorkspaceNotFoundError(f"Unknown workspace: {workspace_id}")
        self._active_workspace_id = workspace_id
        self._persist()

    def update_workspace(self, workspace_id: str, updates: Dict[str, Any]) -> Workspace:
        """
        Shallow-merge a partial update onto a workspace and recompute coverage.

        The existing object is replaced, never mutated. Coverage stats cannot be
        supplied; they are always derived from the merged sections.

        Raises:
            WorkspaceNotFoundError if the id is unknown
            WorkspaceUpdateError if the update names unknown or derived fields
        """
        current = self._workspaces.get(workspace_id)
        if current is None:
            raise WorkspaceNotFoundError(f"Unknown workspace: {workspace_id}")

        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise WorkspaceUpdateError(f"Cannot update fields: {sorted(unknown)}")

        merged_data = current.model_dump()
        for key, value in updates.items():
            merged_data[key] = _as_data(value)

        merged = self._recompute(Workspace.model_validate(merged_data))
        if merged.id != workspace_id:
            raise WorkspaceUpdateError("Workspace id cannot change through an update")

        self._workspaces[workspace_id] = merged
        self._persist()
        return merged.model_copy(deep=True)

    def apply_to_section(
        self,
        workspace_id: str,
        section_id: str,
        transform: Callable[[Section], Section],
    ) -> Workspace:
        """Replace one section with transform(current section), read at write time."""
        current = self._workspaces.get(workspace_id)
        if current is None:
            raise WorkspaceNotFoundError(f"Unknown workspace: {workspace_id}")

        sections = list(current.sections)
        for idx, section in enumerate(sections):
            if section.id == section_id:
                sections[idx] = transform(section.model_copy(deep=True))
                break
        else:
            raise SectionNotFoundError(f"Unknown section {section_id} in workspace {workspace_id}")

        return self.update_workspace(workspace_id, {"sections": sections})

    def update_section(self, workspace_id: str, section_id: str, updates: Dict[str, Any]) -> Workspace:
        """Shallow-merge fields onto one section."""
        unknown = set(updates) - set(Section.model_fields)
        if unknown:
            raise WorkspaceUpdateError(f"Cannot update section fields: {sorted(unknown)}")
        return self.apply_to_section(
            workspace_id,
            section_id,
            lambda section: Section.model_validate({**section.model_dump(), **_as_data(updates)}),
        )
