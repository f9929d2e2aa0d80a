"""
Registry Catalog Sync - command line front end

Lists repositories and tags, shows tag details, and runs the retag and
delete-tags workflows with live progress.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from batch_executor import collect_results
from config_manager import ConfigManager
from debug_logger import DEFAULT_DEBUG_FILE, DebugLogger
from mock_registry import MOCK_REGISTRY_URL, MockRegistry
from registry_client import RegistryManager
from registry_errors import RegistryError
from registry_models import BatchProgress, ItemResult, RegistryRef, RegistryType, ShortTag, TagRename
from registry_service import RegistryV2Service, plan_retag, plan_tag_deletion

VERSION = "0.1.0"


def parse_rename(value: str) -> TagRename:
    """argparse type for OLD=NEW"""
    old, sep, new = value.partition("=")
    if not sep or not old or not new:
        raise argparse.ArgumentTypeError(f"expected OLD=NEW, got {value!r}")
    return TagRename(name=old, new_name=new)


def parse_registry_type(value: str) -> RegistryType:
    try:
        return RegistryType.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registry-catalog-sync",
        description="Browse and edit repositories on a Docker Registry V2 compatible registry"
    )

    parser.add_argument(
        "--registry",
        help="Registry base URL, or the id of a configured registry"
    )

    parser.add_argument(
        "--type",
        type=parse_registry_type,
        default=None,
        help="Registry vendor (custom, github, gitlab, ...); github serializes writes"
    )

    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use an in-memory mock registry"
    )

    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Page size used by the mock registry listings"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging to a file"
    )

    parser.add_argument(
        "--verbose-debug",
        action="store_true",
        help="Enable verbose debug logging including HTTP libraries (httpcore, httpx)"
    )

    parser.add_argument(
        "--debug-location",
        type=str,
        default=DEFAULT_DEBUG_FILE,
        help=f"File path for debug logging (default: {DEFAULT_DEBUG_FILE})"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Registry Catalog Sync {VERSION}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("repos", help="List repositories with their tag counts")

    tags = commands.add_parser("tags", help="List the tags of a repository")
    tags.add_argument("repository")

    tag = commands.add_parser("tag", help="Show the details of one tag")
    tag.add_argument("repository")
    tag.add_argument("tag")

    retag = commands.add_parser("retag", help="Rename tags (OLD=NEW)")
    retag.add_argument("repository")
    retag.add_argument("renames", nargs="+", type=parse_rename, metavar="OLD=NEW")

    delete = commands.add_parser("delete-tags", help="Delete tags, keeping other tags of the same images")
    delete.add_argument("repository")
    delete.add_argument("tags", nargs="+")

    return parser


def resolve_registry(args: argparse.Namespace, config_manager: ConfigManager,
                     manager: RegistryManager) -> RegistryRef:
    """Turn --registry/--type/--mock into a RegistryRef known to the manager"""
    if args.mock:
        return manager.add_registry({"id": "mock", "name": "Mock Registry", "url": MOCK_REGISTRY_URL,
                                     "type": args.type or RegistryType.CUSTOM})

    if not args.registry:
        raise RegistryError("--registry is required unless --mock is given")

    registry_config = config_manager.get_registry_config(args.registry)
    if registry_config is None:
        registry_config = {"id": args.registry, "url": args.registry}
    registry_config = dict(registry_config)
    if args.type is not None:
        registry_config["type"] = args.type
    return manager.add_registry(registry_config)


def _print_progress(progress: BatchProgress, total: int) -> None:
    percent = int(progress.completed * 100 / total) if total else 100
    print(f"\r[{percent:3d}%] {progress.completed}/{total} done, {progress.failed} failed", end="", flush=True)


async def _run_with_progress(stream, total: int) -> int:
    failures: List[ItemResult] = []
    async for event in stream:
        if isinstance(event, BatchProgress):
            _print_progress(event, total)
        elif not event.ok:
            failures.append(event)
    print()
    for failure in failures:
        print(f"  failed: {failure.item!r}: {failure.error}", file=sys.stderr)
    return 1 if failures else 0


async def _short_tags(service: RegistryV2Service, registry: RegistryRef, repository: str) -> List[ShortTag]:
    listing = await service.list_tags(registry, repository)
    summary = await collect_results(
        service.resolve_short_tags_with_progress(registry, repository, listing["tags"])
    )
    if summary.failed:
        names = ", ".join(str(result.item) for result in summary.failed)
        raise RegistryError(f"Unable to resolve tags of {repository}: {names}")
    return [result.value for result in summary.succeeded]


async def run_command(args: argparse.Namespace, service: RegistryV2Service, registry: RegistryRef) -> int:
    if args.command == "repos":
        repositories = await service.list_repositories(registry)
        for repository in await service.get_repositories_details(registry, repositories):
            print(f"{repository.name}\t{repository.tags_count}")
        return 0

    if args.command == "tags":
        listing = await service.list_tags(registry, args.repository)
        for tag in listing["tags"]:
            print(tag)
        return 0

    if args.command == "tag":
        detail = await service.resolve_tag(registry, args.repository, args.tag)
        print(f"Name:         {detail.name}")
        print(f"Digest:       {detail.image_digest}")
        print(f"Image ID:     {detail.image_id}")
        print(f"OS/Arch:      {detail.os or '-'}/{detail.architecture or '-'}")
        print(f"Size:         {detail.size if detail.size is not None else '-'}")
        print(f"History:      {len(detail.history)} entries")
        return 0

    short_tags = await _short_tags(service, registry, args.repository)
    known = {tag.name for tag in short_tags}

    if args.command == "retag":
        missing = [rename.name for rename in args.renames if rename.name not in known]
        if missing:
            raise RegistryError(f"Unknown tags: {', '.join(missing)}")
        digests, impacted = plan_retag(short_tags, args.renames)
        stream = service.retag_with_progress(registry, args.repository, args.renames, digests, impacted)
    else:
        missing = [name for name in args.tags if name not in known]
        if missing:
            raise RegistryError(f"Unknown tags: {', '.join(missing)}")
        digests, impacted = plan_tag_deletion(short_tags, args.tags)
        stream = service.delete_tags_with_progress(registry, args.repository, digests, impacted)

    return await _run_with_progress(stream, len(digests) + len(impacted))


async def async_main(args: argparse.Namespace, config_manager: ConfigManager,
                     debug_logger: DebugLogger) -> int:
    settings = config_manager.get_app_settings()
    transport = None
    if args.mock:
        page_size = args.page_size or settings.get("default_page_size")
        transport = MockRegistry.with_sample_data(page_size=page_size).transport()

    async with RegistryManager(timeout=settings.get("request_timeout", 30), debug_logger=debug_logger,
                               transport=transport) as manager:
        registry = resolve_registry(args, config_manager, manager)
        debug_logger.debug("Registry resolved", registry_id=registry.id, registry_type=registry.type.name)
        return await run_command(args, RegistryV2Service(manager), registry)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    debug_enabled = args.debug or args.verbose_debug
    debug_logger = DebugLogger(enabled=debug_enabled, verbose=args.verbose_debug,
                               debug_file_path=args.debug_location)
    if not debug_enabled:
        logging.basicConfig(level=logging.WARNING, format='%(levelname)s %(name)s: %(message)s')

    debug_logger.debug("Starting Registry Catalog Sync", command=args.command, mock_mode=args.mock)

    try:
        return asyncio.run(async_main(args, ConfigManager(), debug_logger))
    except RegistryError as e:
        debug_logger.error("Command failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
