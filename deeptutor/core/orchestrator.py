"""
EnrichmentOrchestrator: document ingestion, section navigation and on-demand
unit synthesis.

Per-section state: unsynthesized -> synthesizing -> synthesized, or failed (retried
on the next selection). A section already in flight or already synthesized is
never sent to the synthesizer again. Results are written by section id against
the store's current state, so a result arriving after the user navigated away
still lands in its own section.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from deeptutor.core.attachments import infer_document_type, subject_from_filename
from deeptutor.core.coercion import UnitOutline
from deeptutor.core.synthesizer import CurriculumSynthesizer
from deeptutor.shared.exceptions import SectionNotFoundError, WorkspaceNotFoundError, user_facing_message
from deeptutor.shared.logging import get_logger, log_with_context
from deeptutor.workspace.models import (
    Attachment,
    FileMetadata,
    Section,
    SectionStatus,
    Workspace,
)
from deeptutor.workspace.sections import find_section, new_id, now_iso, unlock
from deeptutor.workspace.store import WorkspaceStore

logger = get_logger(__name__)


class EnrichmentState(str, Enum):
    UNSYNTHESIZED = "unsynthesized"
    SYNTHESIZING = "synthesizing"
    SYNTHESIZED = "synthesized"
    FAILED = "failed"


def build_workspace(attachment: Attachment, units: List[UnitOutline]) -> Workspace:
    """New workspace from a discovered outline; the first unit starts in progress."""
    sections = [
        Section(
            id=new_id(),
            title=unit.title,
            summary=unit.summary,
            source_reference=unit.source_reference,
            dependencies=unit.dependencies,
            status=SectionStatus.IN_PROGRESS if idx == 0 else SectionStatus.LOCKED,
        )
        for idx, unit in enumerate(units)
    ]
    return Workspace(
        file_info=FileMetadata(
            id=new_id(),
            name=attachment.name,
            type=infer_document_type(attachment.name),
            upload_date=now_iso(),
        ),
        subject=subject_from_filename(attachment.name),
        sections=sections,
        active_section_index=0,
        attachment=attachment,
    )


class EnrichmentOrchestrator:
    """
    Drives progressive generation for the workspaces in a store.

    This is the UI-facing boundary: generation errors never escape from its
    actions. They are logged and recorded in last_error as a user-facing message.
    """

    def __init__(
        self,
        store: Optional[WorkspaceStore] = None,
        synthesizer: Optional[CurriculumSynthesizer] = None,
    ):
        self.store = store or WorkspaceStore()
        self.synthesizer = synthesizer or CurriculumSynthesizer()
        self._in_flight: Set[Tuple[str, str]] = set()
        self._failures: Dict[Tuple[str, str], str] = {}
        self.last_error: Optional[str] = None
        self.is_ingesting = False

    @property
    def is_enriching(self) -> bool:
        return bool(self._in_flight)

    def section_state(self, workspace_id: str, section_id: str) -> EnrichmentState:
        key = (workspace_id, section_id)
        if key in self._in_flight:
            return EnrichmentState.SYNTHESIZING
        if self._find_section(workspace_id, section_id).is_synthesized:
            return EnrichmentState.SYNTHESIZED
        if key in self._failures:
            return EnrichmentState.FAILED
        return EnrichmentState.UNSYNTHESIZED

    def _find_section(self, workspace_id: str, section_id: str) -> Section:
        return find_section(self.store.get_workspace(workspace_id), section_id)

    def _record_failure(self, error: Exception, action: str, workspace_id: Optional[str] = None,
                        section_id: Optional[str] = None) -> str:
        message = user_facing_message(error)
        self.last_error = message
        log_with_context(
            logger, logging.ERROR, f"{action} failed: {type(error).__name__}: {error}",
            workspace_id=workspace_id, section_id=section_id, action=action,
        )
        return message

    async def ingest_document(self, attachment: Attachment) -> Optional[Workspace]:
        """
        Discover the curriculum of a document, create its workspace and enrich
        the first unit.

        Returns:
            The new workspace, or None when discovery failed (see last_error).
            No workspace is created on failure.
        """
        self.last_error = None
        self.is_ingesting = True
        try:
            units = await self.synthesizer.discover_structure(attachment)
            workspace = self.store.add_workspace(build_workspace(attachment, units))
        except Exception as e:
            self._record_failure(e, "ingest_document")
            return None
        finally:
            self.is_ingesting = False

        log_with_context(
            logger, logging.INFO, f"Created workspace '{workspace.subject}' with {len(workspace.sections)} units",
            workspace_id=workspace.id, action="ingest_document",
        )
        await self.ensure_enriched(workspace.id, workspace.sections[0].id)
        return self.store.get_workspace(workspace.id)

    async def ensure_enriched(self, workspace_id: str, section_id: str) -> bool:
        """
        Synthesize a section unless it is synthesized or already in flight.

        Returns:
            True if this call synthesized and stored the section
        """
        key = (workspace_id, section_id)
        if key in self._in_flight:
            return False

        workspace = self.store.get_workspace(workspace_id)
        section = self._find_section(workspace_id, section_id)
        if section.is_synthesized:
            return False

        self._in_flight.add(key)
        self._failures.pop(key, None)
        log_with_context(
            logger, logging.INFO, f"Synthesizing unit '{section.title}'",
            workspace_id=workspace_id, section_id=section_id, action="synthesize_unit",
        )
        try:
            bundle = await self.synthesizer.synthesize_unit(section, workspace.attachment)
        except Exception as e:
            self._failures[key] = self._record_failure(e, "synthesize_unit", workspace_id, section_id)
            return False
        finally:
            self._in_flight.discard(key)

        try:
            self.store.update_section(
                workspace_id, section_id, {**bundle.section_updates(), "is_synthesized": True}
            )
        except (WorkspaceNotFoundError, SectionNotFoundError):
            # Workspace was cleared while the call was in flight
            logger.warning(
                "Dropping synthesis result for a removed section",
                extra={"workspace_id": workspace_id, "section_id": section_id},
            )
            return False

        log_with_context(
            logger, logging.INFO, "Unit synthesized",
            workspace_id=workspace_id, section_id=section_id, action="synthesize_unit",
        )
        return True

    async def activate_section(self, workspace_id: str, index: int) -> Workspace:
        """
        Make section `index` active, unlock it and enrich it if needed.

        Raises:
            WorkspaceNotFoundError, SectionNotFoundError for a bad id or index
        """
        workspace = self.store.get_workspace(workspace_id)
        if not 0 <= index < len(workspace.sections):
            raise SectionNotFoundError(f"No section at index {index} in workspace {workspace_id}")

        self.last_error = None
        section_id = workspace.sections[index].id
        self.store.update_workspace(workspace_id, {"active_section_index": index})
        self.store.apply_to_section(workspace_id, section_id, unlock)
        await self.ensure_enriched(workspace_id, section_id)
        return self.store.get_workspace(workspace_id)

    async def advance(self, workspace_id: str) -> Optional[Workspace]:
        """Move to the next section; None when already on the last one."""
        workspace = self.store.get_workspace(workspace_id)
        next_index = workspace.active_section_index + 1
        if next_index >= len(workspace.sections):
            return None
        return await self.activate_section(workspace_id, next_index)

    def select_workspace(self, workspace_id: str):
        self.store.set_active_workspace(workspace_id)

    def clear(self):
        """Remove every workspace. In-flight results for them are dropped on arrival."""
        self.store.clear()
        self._failures.clear()
        self.last_error = None
