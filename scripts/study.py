"""
CLI entry point: build a study workspace from a document.
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from deeptutor.core.attachments import encode_file
from deeptutor.core.orchestrator import EnrichmentOrchestrator
from deeptutor.core.study import StudyActions
from deeptutor.core.synthesizer import CurriculumSynthesizer
from deeptutor.gateway.client import GenerationGateway, create_strategy
from deeptutor.shared.config import settings
from deeptutor.shared.exceptions import AttachmentError
from deeptutor.shared.logging import setup_logging
from deeptutor.workspace.store import WorkspaceStore


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="DeepTutor study workspace builder")
    parser.add_argument("document", type=Path, help="Document to study (pdf, image or text)")
    parser.add_argument("--mime-type", default=None, help="Override the guessed MIME type")
    parser.add_argument(
        "--mode",
        choices=["proxy", "direct"],
        default=settings.gateway.mode,
        help="Transport mode"
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=Path(settings.storage.db_path),
        help="Workspace database path"
    )
    parser.add_argument("--all", action="store_true", help="Synthesize every unit, not just the first")
    parser.add_argument("--schedule", action="store_true", help="Generate a study schedule")

    args = parser.parse_args(argv)

    setup_logging()

    try:
        attachment = encode_file(args.document, args.mime_type)
    except AttachmentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    gateway = GenerationGateway(strategy=create_strategy(args.mode))
    synthesizer = CurriculumSynthesizer(gateway=gateway)
    orchestrator = EnrichmentOrchestrator(WorkspaceStore(db_path=args.db_path), synthesizer)
    try:
        workspace = await orchestrator.ingest_document(attachment)
        if workspace is None:
            print(f"Error: {orchestrator.last_error}", file=sys.stderr)
            return 1

        # Unit 1 is synthesized during ingest
        failed_units = 0
        if orchestrator.last_error:
            failed_units += 1
            print(f"Unit 1: {orchestrator.last_error}", file=sys.stderr)

        if args.all:
            for idx in range(1, len(workspace.sections)):
                workspace = await orchestrator.activate_section(workspace.id, idx)
                if orchestrator.last_error:
                    failed_units += 1
                    print(f"Unit {idx + 1}: {orchestrator.last_error}", file=sys.stderr)

        schedule = []
        if args.schedule:
            schedule = await StudyActions(orchestrator.store, synthesizer).build_schedule(workspace.id)
    finally:
        await gateway.aclose()

    print("\n" + "=" * 50)
    print(f"Workspace: {workspace.subject}")
    print("=" * 50)
    for idx, section in enumerate(workspace.sections, start=1):
        state = "synthesized" if section.is_synthesized else section.status.value
        print(f"{idx}. {section.title} [{state}] "
              f"({len(section.flashcards)} cards, {len(section.practice_questions)} questions)")
    stats = workspace.coverage_stats
    print("-" * 50)
    print(f"Ingested: {stats.ingested}%  Retained: {stats.retained}%  Validated: {stats.validated}%")
    if schedule:
        print("-" * 50)
        for item in schedule:
            print(f"- {item.title} ({item.duration_minutes} min): {item.focus}")
    print("=" * 50)
    return 1 if failed_units else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
