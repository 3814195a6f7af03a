#!/usr/bin/env python3
"""Inspect and maintain a threadmem database.

Usage examples:
    # Threads of a resource, newest first
    python scripts/memory_admin.py threads user-42

    # Last 20 messages of a thread
    python scripts/memory_admin.py show <thread_id> --limit 20

    # Working memory of a thread (or of the whole resource)
    python scripts/memory_admin.py working-memory <thread_id>
    python scripts/memory_admin.py working-memory <thread_id> --scope resource

    # Embed messages saved while the embedding API was down
    python scripts/memory_admin.py reindex <thread_id>

    # Delete a thread with its messages, vectors and working memory
    python scripts/memory_admin.py delete <thread_id> --yes
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from threadmem.config import settings
from threadmem.embeddings import HttpEmbedder
from threadmem.errors import MemoryEngineError
from threadmem.memory import Memory, MemoryOptions, Scope

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def _memory(args: argparse.Namespace, *, with_embedder: bool = False) -> Memory:
    embedder = None
    if with_embedder:
        if not settings.embeddings_enabled:
            print("ERROR: EMBEDDING_API_KEY is not set in .env", file=sys.stderr)
            sys.exit(1)
        embedder = HttpEmbedder()
    return Memory(MemoryOptions(), args.db, embedder=embedder)


async def cmd_threads(args: argparse.Namespace) -> None:
    threads = await _memory(args).list_threads(args.resource_id)
    if not threads:
        print(f"No threads for {args.resource_id}.")
        return
    for thread in threads:
        print(f"{thread.id}  {thread.created_at}  {thread.title or '(untitled)'}")


async def cmd_show(args: argparse.Namespace) -> None:
    memory = _memory(args)
    thread = await memory.get_thread(args.thread_id)
    messages = await memory.threads.get_recent_messages(thread.id, args.limit)
    total = await memory.threads.count_messages(thread.id)

    print(f"--- {thread.title or '(untitled)'} [{thread.resource_id}] {len(messages)}/{total} ---\n")
    for msg in messages:
        print(f"#{msg.seq:<4d} {msg.role:9s} {msg.text}")


async def cmd_working_memory(args: argparse.Namespace) -> None:
    memory = _memory(args)
    thread = await memory.get_thread(args.thread_id)
    scope = Scope.resource(thread.resource_id) if args.scope == "resource" else Scope.thread(thread.id)

    snapshot = await memory.working_memory.get(scope)
    if snapshot is None:
        print(f"No working memory for {scope.key}.")
        return
    print(f"--- {scope.key} v{snapshot.version} ({snapshot.updated_at}) ---\n")
    print(snapshot.content)


async def cmd_reindex(args: argparse.Namespace) -> None:
    memory = _memory(args, with_embedder=True)
    indexed = await memory.reindex_thread(args.thread_id)
    print(f"Indexed {indexed} message(s) with {memory.embedder.model}.")


async def cmd_delete(args: argparse.Namespace) -> None:
    if not args.yes:
        print("Refusing to delete without --yes.", file=sys.stderr)
        sys.exit(1)
    deleted = await _memory(args).delete_thread(args.thread_id)
    print("Deleted." if deleted else f"No thread {args.thread_id}.")


COMMANDS = {
    "threads": cmd_threads,
    "show": cmd_show,
    "working-memory": cmd_working_memory,
    "reindex": cmd_reindex,
    "delete": cmd_delete,
}


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect and maintain a threadmem database")
    parser.add_argument(
        "--db",
        type=Path,
        default=settings.database_path,
        help=f"SQLite database (default: {settings.database_path})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("threads", help="List threads of a resource")
    p.add_argument("resource_id")

    p = sub.add_parser("show", help="Print the latest messages of a thread")
    p.add_argument("thread_id")
    p.add_argument("--limit", "-n", type=int, default=50, help="Max messages (default: 50)")

    p = sub.add_parser("working-memory", help="Print the working memory of a thread")
    p.add_argument("thread_id")
    p.add_argument("--scope", choices=["thread", "resource"], default="thread")

    p = sub.add_parser("reindex", help="Embed messages that have no vector yet")
    p.add_argument("thread_id")

    p = sub.add_parser("delete", help="Delete a thread and everything derived from it")
    p.add_argument("thread_id")
    p.add_argument("--yes", action="store_true", help="Confirm the deletion")

    args = parser.parse_args()
    try:
        asyncio.run(COMMANDS[args.command](args))
    except MemoryEngineError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
