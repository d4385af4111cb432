"""Command line interface for managing project checkpoints."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

import structlog

from .checkpoints import CheckpointStore
from .errors import CheckpointError
from .logs import configure_logging
from .options import RestoreOptionSet
from .project import ALL_CATEGORIES, LiveProject
from .session import ProjectSession
from .settings import CheckpointSettings
from .storage import DirectoryByteStore

logger = structlog.get_logger(__name__)

DEFAULT_PROJECT_PATH = Path("project.json")
DEFAULT_STORE_DIRNAME = ".checkpoints"

_CATEGORY_NAMES = [kind.value for kind in ALL_CATEGORIES]


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="scene-checkpoints",
        description="Create, inspect and restore checkpoints of a writing project.",
    )
    parser.add_argument(
        "--project",
        type=Path,
        default=DEFAULT_PROJECT_PATH,
        help=(
            "Path to the JSON project document (default: ./project.json). "
            "A starter project is written there when the file does not exist yet."
        ),
    )
    parser.add_argument(
        "--store",
        type=Path,
        help=(
            "Directory holding checkpoints. Defaults to SCENE_CHECKPOINTS_STORE_DIR, "
            "then to a .checkpoints directory beside the project."
        ),
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine readable JSON instead of text.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output to stderr.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List checkpoints, newest first.")

    create = commands.add_parser("create", help="Create a checkpoint of the project.")
    create.add_argument("--label", default="", help="Optional checkpoint label.")

    show = commands.add_parser("show", help="Show one checkpoint and its contents.")
    show.add_argument("checkpoint_id", metavar="ID")

    delete = commands.add_parser("delete", help="Delete a checkpoint.")
    delete.add_argument("checkpoint_id", metavar="ID")

    history = commands.add_parser(
        "history", help="Show one scene as stored in each checkpoint, newest first."
    )
    history.add_argument("scene_id", metavar="SCENE_ID")

    restore = commands.add_parser(
        "restore", help="Restore categories from a checkpoint into the project."
    )
    restore.add_argument("checkpoint_id", metavar="ID")
    restore.add_argument(
        "--only",
        nargs="+",
        choices=_CATEGORY_NAMES,
        metavar="KIND",
        help="Restore just these categories: " + ", ".join(_CATEGORY_NAMES) + ".",
    )
    restore.add_argument(
        "--exclude",
        nargs="+",
        choices=_CATEGORY_NAMES,
        default=[],
        metavar="KIND",
        help="Leave these categories untouched.",
    )
    restore.add_argument(
        "--restore-deleted",
        action="store_true",
        help="Re-create entries that exist in the checkpoint but not in the project.",
    )
    restore.add_argument(
        "--delete-missing",
        action="store_true",
        help="Delete project entries that the checkpoint does not contain.",
    )
    return parser.parse_args(argv)


def load_project(path: Path) -> LiveProject:
    """Read a project document, falling back to a starter project."""

    if not path.exists():
        logger.info("project_missing_using_starter", path=str(path))
        return LiveProject.starter()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Project file '{path}' is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Project file '{path}' must contain a JSON object.")
    return LiveProject.from_payload(payload)


def save_project(path: Path, project: LiveProject) -> None:
    content = json.dumps(project.to_payload(), ensure_ascii=False, indent=2)
    temporary = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temporary.write_text(content + "\n", encoding="utf-8")
        temporary.replace(path)
    except OSError as exc:
        raise RuntimeError(f"Failed to write project file '{path}'.") from exc
    logger.debug("project_saved", path=str(path))


def _build_store(args: argparse.Namespace, settings: CheckpointSettings) -> CheckpointStore:
    if args.store is not None:
        return CheckpointStore(DirectoryByteStore(args.store), retention=settings.retention)
    if settings.store_dir is not None or settings.s3_bucket is not None:
        return settings.build_store()
    default_dir = args.project.expanduser().resolve().parent / DEFAULT_STORE_DIRNAME
    return CheckpointStore(DirectoryByteStore(default_dir), retention=settings.retention)


def _build_options(args: argparse.Namespace) -> RestoreOptionSet:
    flags = {
        "restore_deleted_entries": args.restore_deleted,
        "delete_entries_not_in_checkpoint": args.delete_missing,
    }
    if args.only:
        options = RestoreOptionSet.only(*args.only, **flags)
    else:
        options = RestoreOptionSet.all(**flags)
    return options.excluding(args.exclude)


def _emit(args: argparse.Namespace, payload: object, text: str) -> None:
    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(text)


def _run(args: argparse.Namespace, settings: CheckpointSettings) -> None:
    project_path: Path = args.project.expanduser()
    project = load_project(project_path)
    if not project_path.exists():
        save_project(project_path, project)
    session = ProjectSession(
        project,
        _build_store(args, settings),
        automatic_triggers=settings.automatic_triggers,
    )

    if args.command == "list":
        listings = session.list_checkpoints()
        lines = [
            f"{item.id}  {item.created_at.isoformat()}  {item.label}".rstrip()
            for item in listings
        ]
        _emit(
            args,
            [item.to_payload() for item in listings],
            "\n".join(lines) if lines else "No checkpoints yet.",
        )
    elif args.command == "create":
        checkpoint_id = session.create_checkpoint(args.label)
        listing = session.store.listing(checkpoint_id)
        _emit(args, listing.to_payload(), checkpoint_id)
    elif args.command == "show":
        listing = session.store.listing(args.checkpoint_id)
        counts = session.store.load(args.checkpoint_id).counts()
        lines = [
            f"Checkpoint: {listing.id}",
            f"Created:    {listing.created_at.isoformat()}",
            f"Label:      {listing.label or '-'}",
        ]
        lines.extend(f"  {name}: {count}" for name, count in counts.items())
        _emit(args, {**listing.to_payload(), "counts": counts}, "\n".join(lines))
    elif args.command == "delete":
        session.delete_checkpoint(args.checkpoint_id)
        _emit(
            args,
            {"id": args.checkpoint_id, "deleted": True},
            f"Deleted checkpoint {args.checkpoint_id}.",
        )
    elif args.command == "history":
        revisions = session.scene_history(args.scene_id)
        lines = [
            f"{item.checkpoint_id}  {item.created_at.isoformat()}  {item.title}"
            f"  ({len(item.content)} characters)"
            for item in revisions
        ]
        _emit(
            args,
            [
                {
                    "checkpoint_id": item.checkpoint_id,
                    "created_at": item.created_at.isoformat(),
                    "label": item.label,
                    "title": item.title,
                    "content": item.content,
                }
                for item in revisions
            ],
            "\n".join(lines) if lines else f"No checkpoint contains scene {args.scene_id}.",
        )
    elif args.command == "restore":
        report = session.restore(args.checkpoint_id, _build_options(args))
        save_project(project_path, session.project)
        lines = [report.summary()]
        lines.extend(
            f"  scene {item.scene_id} -> chapter {item.chapter_id} ({item.reason})"
            for item in report.reattached
        )
        _emit(args, report.to_payload(), "\n".join(lines))
    else:  # pragma: no cover - argparse rejects unknown commands
        raise ValueError(f"Unknown command '{args.command}'.")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the checkpoint command line and return the process exit code."""

    args = _parse_args(argv)
    try:
        settings = CheckpointSettings.from_env()
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    configure_logging(
        "DEBUG" if args.verbose else settings.log_level,
        json_format=settings.log_json,
    )

    try:
        _run(args, settings)
    except (CheckpointError, ValueError, RuntimeError, OSError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


__all__ = ["load_project", "main", "save_project"]
