# ABOUTME: CLI entry point for feed-vault.
# ABOUTME: Feed add/refresh, archive queue processing, cleanup, reset, and the image server.

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable

import structlog
import uvicorn

from feed_vault.config import get_settings
from feed_vault.errors import FeedVaultError
from feed_vault.logging import configure_logging
from feed_vault.services.pipeline import Pipeline

log = structlog.get_logger()


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the archived image server."""
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port
    log.info("starting_server", host=host, port=port)
    uvicorn.run(
        "feed_vault.web.app:create_app", factory=True, host=host, port=port, reload=args.reload
    )


async def _with_pipeline(operation: Callable[[Pipeline], Awaitable[None]]) -> None:
    """Run one pipeline operation, then wait for any archival it scheduled."""
    from feed_vault.db.session import close_db, init_db

    await init_db()
    pipeline = Pipeline()
    try:
        await operation(pipeline)
        await pipeline.worker.join()
    finally:
        await pipeline.close()
        await close_db()


async def _add(pipeline: Pipeline, args: argparse.Namespace) -> None:
    feed_id = await pipeline.add_feed(args.url)
    print(f"Added feed {feed_id}: {args.url}")


async def _refresh(pipeline: Pipeline, args: argparse.Namespace) -> None:
    if args.feed_id is None:
        new = await pipeline.refresh_all_feeds()
    else:
        new = await pipeline.refresh_feed(args.feed_id)
    print(f"New articles: {new}")


async def _process(pipeline: Pipeline, _args: argparse.Namespace) -> None:
    processed = await pipeline.process_undownloaded_articles()
    print(f"Processed articles: {processed}")


async def _cleanup(pipeline: Pipeline, _args: argparse.Namespace) -> None:
    result = await pipeline.cleanup_old_content()
    print(
        f"Purged {result.purged_articles} articles, "
        f"deleted {result.deleted_images} images ({result.deleted_files} files)"
    )


async def _reset(pipeline: Pipeline, _args: argparse.Namespace) -> None:
    count = await pipeline.reset_archive_state()
    print(f"Reset {count} articles")


async def _remove(pipeline: Pipeline, args: argparse.Namespace) -> None:
    await pipeline.remove_feed(args.feed_id)
    print(f"Removed feed {args.feed_id}")


async def _feeds(pipeline: Pipeline, _args: argparse.Namespace) -> None:
    feeds = await pipeline.store.list_feeds()
    unread = await pipeline.store.unread_counts()
    for feed in feeds:
        print(f"{feed.id:>4}  {unread.get(feed.id, 0):>4} unread  {feed.title}  <{feed.url}>")


PIPELINE_COMMANDS = {
    "add": _add,
    "refresh": _refresh,
    "process": _process,
    "cleanup": _cleanup,
    "reset": _reset,
    "remove": _remove,
    "feeds": _feeds,
}


def cmd_pipeline(args: argparse.Namespace) -> None:
    command = PIPELINE_COMMANDS[args.command]
    try:
        asyncio.run(_with_pipeline(lambda pipeline: command(pipeline, args)))
    except FeedVaultError as e:
        log.error("command_failed", command=args.command, error=str(e))
        sys.exit(1)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="feed-vault", description="RSS reader with offline article archive"
    )
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Serve archived images")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # feeds
    add_parser = subparsers.add_parser("add", help="Subscribe to a feed URL")
    add_parser.add_argument("url", type=str)
    refresh_parser = subparsers.add_parser("refresh", help="Refresh one or all feeds")
    refresh_parser.add_argument("--feed-id", type=int, default=None)
    remove_parser = subparsers.add_parser("remove", help="Delete a feed and its archive")
    remove_parser.add_argument("feed_id", type=int)
    subparsers.add_parser("feeds", help="List feeds with unread counts")

    # archive maintenance
    subparsers.add_parser("process", help="Archive all pending articles")
    subparsers.add_parser("cleanup", help="Purge archives past the retention window")
    subparsers.add_parser("reset", help="Mark every article as not archived")

    args = parser.parse_args()
    configure_logging(get_settings().log_level)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command in PIPELINE_COMMANDS:
        cmd_pipeline(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
