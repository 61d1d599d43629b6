#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Indexing CLI - Command-line interface for indexing jobs

Usage:
    indexctl start --batch-size 20
    indexctl start --images-only --mode queue
    indexctl status
    indexctl stop
    indexctl resume
    indexctl watch
"""

import sys
import asyncio
import argparse
from datetime import datetime
from typing import Optional

from config.constants import BATCH_SIZE_MIN, BATCH_SIZE_MAX, STOP_INTENT_FILE
from config.logging_config import configure_logging
from orchestrator import (
    ExecutionMode,
    HttpIndexingBackend,
    IndexingManager,
    IndexingError,
    InvariantViolationError,
    JobConfig,
    JobEvents,
    JobOutcome,
    JobSummary,
    StopIntentStore,
    create_logging_callback,
)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def batch_size_arg(value: str) -> int:
    """argparse type for --batch-size (1..50)"""
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value}")
    if not BATCH_SIZE_MIN <= size <= BATCH_SIZE_MAX:
        raise argparse.ArgumentTypeError(
            f"batch size must be between {BATCH_SIZE_MIN} and {BATCH_SIZE_MAX}"
        )
    return size


def format_timestamp(ts: Optional[float]) -> str:
    """Format epoch timestamp for display"""
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def load_settings(args):
    """Global settings, with command-line overrides applied"""
    from config.settings import Settings, settings

    overrides = {}
    if args.url:
        overrides["ajax_url"] = args.url
    if args.nonce:
        overrides["ajax_nonce"] = args.nonce
    if args.job_type:
        overrides["job_type"] = args.job_type
    if getattr(args, "mode", None):
        overrides["execution_mode"] = args.mode
    if getattr(args, "batch_size", None):
        overrides["batch_size"] = args.batch_size
    if getattr(args, "images_only", False):
        overrides["images_only"] = True
    if args.log_level:
        overrides["log_level"] = args.log_level

    return Settings(**overrides) if overrides else settings


def build_manager(backend: HttpIndexingBackend, config) -> IndexingManager:
    manager = IndexingManager.from_settings(backend, config)
    manager.events.add_callback(JobEvents.PROGRESS, create_logging_callback(log_interval=1))
    manager.events.add_callback(
        JobEvents.STATE,
        lambda state: print(f"   State: {state.value}"),
    )
    return manager


def exit_code_for(summary: Optional[JobSummary]) -> int:
    if summary is None:
        return EXIT_OK
    if summary.outcome in (JobOutcome.SUCCESS, JobOutcome.SUCCESS_WITH_ERRORS, JobOutcome.STOPPED):
        return EXIT_OK
    return EXIT_FAILED


def print_summary(summary: Optional[JobSummary]):
    if summary is None:
        return
    icon = {
        JobOutcome.SUCCESS: "✅",
        JobOutcome.SUCCESS_WITH_ERRORS: "⚠️",
        JobOutcome.INCOMPLETE: "❌",
        JobOutcome.STOPPED: "🛑",
        JobOutcome.EXHAUSTED: "💳",
    }.get(summary.outcome, "❓")
    print(f"\n{icon} {summary.headline}")
    for error in summary.errors[:10]:
        print(f"   - {error}")
    if len(summary.errors) > 10:
        print(f"   ... and {len(summary.errors) - 10} more")


async def run_start(args, config) -> int:
    """Start a new job (or re-attach to a running one) and follow it"""
    async with HttpIndexingBackend.from_settings(config) as backend:
        manager = build_manager(backend, config)

        resumed = await manager.check_and_resume()
        if resumed.active:
            print("⏳ A job is already running on the server, re-attached to it")
        else:
            state = await manager.start(JobConfig(
                batch_size=config.batch_size,
                images_only=config.images_only,
            ))
            if state is None:
                print("ℹ️  Nothing to index.")
                return EXIT_OK
            print(f"🚀 Indexing started: {state.total} items, batch size {state.batch_size}")

        return await follow(manager)


async def run_resume(args, config) -> int:
    """Re-attach to a job left running by an earlier session"""
    async with HttpIndexingBackend.from_settings(config) as backend:
        manager = build_manager(backend, config)

        result = await manager.check_and_resume()
        if result.error:
            print(f"❌ Resume check failed: {result.error}")
            return EXIT_FAILED
        if not result.active:
            if result.stale_intent_cleared:
                print("🧹 Cleared a stale stop flag")
            print("No active job.")
            return EXIT_OK

        print(f"⏳ Re-attached ({'stopping' if result.stopping else config.execution_mode})")
        return await follow(manager)


async def follow(manager: IndexingManager) -> int:
    """Follow the attached job until it finishes or the server drains"""
    summary = await manager.wait()
    await manager.wait_idle()
    print_summary(summary)
    return exit_code_for(summary)


async def run_stop(args, config) -> int:
    """Persist the stop flag and clear the server-side queue"""
    intents = StopIntentStore(config.state_dir / STOP_INTENT_FILE)
    intents.set(config.job_type)

    async with HttpIndexingBackend.from_settings(config) as backend:
        cleared = await backend.request_stop(config.job_type)
        print(f"🛑 Stop requested: {cleared} queued items cleared")

        if args.wait:
            manager = build_manager(backend, config)
            manager.reconciler.start_polling(assume_active=True)
            await manager.wait_idle()
            print("✅ Indexing stopped")

    return EXIT_OK


async def run_status(args, config) -> int:
    """Show server-side progress and queue state"""
    if args.show_config:
        config.print_config()

    async with HttpIndexingBackend.from_settings(config) as backend:
        info = await backend.get_active_job(config.job_type)
        report = await backend.get_status(config.job_type)

    intents = StopIntentStore(config.state_dir / STOP_INTENT_FILE)

    print("\n" + "="*60)
    print(f"📋 INDEXING: {config.job_type}")
    print("="*60)
    print(f"   Active job:     {'yes' if info.active else 'no'}")
    if info.active:
        print(f"   Progress:       {info.processed}/{info.total} ({info.remaining} remaining)")
        print(f"   Batch size:     {info.batch_size or '-'}")
        print(f"   Started:        {format_timestamp(info.started_at)}")
    print(f"   Worker running: {'yes' if report.worker_active else 'no'}")
    print(f"   Queue:          {report.pending_items} pending")
    print(f"   Indexed:        {report.processed}")
    if report.credits_remaining is not None:
        print(f"   Credits left:   {report.credits_remaining}")
    if intents.is_set(config.job_type):
        print("   Stop flag:      set (stopping)")
    print("="*60 + "\n")
    return EXIT_OK


async def run_watch(args, config) -> int:
    """Poll server status until the job drains"""
    async with HttpIndexingBackend.from_settings(config) as backend:
        manager = build_manager(backend, config)
        manager.reconciler.start_polling()
        await manager.wait_idle()

    status = manager.reconciler.last_status
    if status is not None:
        print(f"✅ Idle: {status.processed} indexed")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="indexctl",
        description="Indexing job CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--url', help='admin-ajax endpoint (default: AJAX_URL setting)')
    parser.add_argument('--nonce', help='Request nonce')
    parser.add_argument('--job-type', help='Job type (default: forum_topics)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Start indexing')
    start_parser.add_argument('--batch-size', '-b', type=batch_size_arg, help='Items per batch (1-50)')
    start_parser.add_argument('--images-only', action='store_true', help='Only index items with images')
    start_parser.add_argument('--mode', choices=[m.value for m in ExecutionMode], help='Execution mode')

    # Stop command
    stop_parser = subparsers.add_parser('stop', help='Stop indexing')
    stop_parser.add_argument('--wait', '-w', action='store_true', help='Wait until the server is idle')

    # Status command
    status_parser = subparsers.add_parser('status', help='Show indexing status')
    status_parser.add_argument('--show-config', action='store_true', help='Print the effective configuration first')

    # Resume command
    resume_parser = subparsers.add_parser('resume', help='Re-attach to a running job')
    resume_parser.add_argument('--mode', choices=[m.value for m in ExecutionMode], help='Execution mode')

    # Watch command
    subparsers.add_parser('watch', help='Poll status until idle')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    commands = {
        'start': run_start,
        'stop': run_stop,
        'status': run_status,
        'resume': run_resume,
        'watch': run_watch,
    }

    config = load_settings(args)
    configure_logging(config.log_level, config.log_file)

    try:
        return asyncio.run(commands[args.command](args, config))
    except InvariantViolationError as e:
        print(f"❌ {e}")
        return EXIT_USAGE
    except IndexingError as e:
        print(f"❌ {e}")
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\n🛑 Interrupted. The server keeps its queue; run 'indexctl resume' to re-attach.")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
