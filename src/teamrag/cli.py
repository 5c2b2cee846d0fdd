"""Command line interface for TeamRAG."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Sequence

from teamrag.config import Settings, get_settings
from teamrag.eval import cli as eval_cli
from teamrag.ingestion import SUPPORTED_EXTENSIONS
from teamrag.metrics.observability import configure_logging
from teamrag.models import PipelineResult
from teamrag.runtime import AppDependencies, build_dependencies
from teamrag.services.query import PipelineError

EXIT_COMMANDS = {"exit", "quit"}


def load_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.safety is not None:
        overrides["safety"] = args.safety
    if args.config is not None:
        return Settings.from_yaml(args.config, **overrides)
    return get_settings(overrides)


def _print_result(result: PipelineResult) -> None:
    print(result.text)
    if result.sources:
        print("\nSources:")
        for index, source in enumerate(result.sources, start=1):
            label = source.source_title or source.source_path or f"Document {source.id}"
            print(f"  [{index}] {label} (score: {source.score or 0.0:.3f})")


async def _ask(deps: AppDependencies, args: argparse.Namespace) -> int:
    question = " ".join(args.question)
    print(f"Question: {question}\n")
    try:
        result = await deps.query_service.answer(question, temperature=args.temperature)
    except PipelineError as exc:
        print(f"Error: failed to get answer: {exc}", file=sys.stderr)
        return 1
    _print_result(result)
    return 0


async def _chat(deps: AppDependencies, args: argparse.Namespace) -> int:
    settings = deps.settings
    print(f"Backend: {settings.backend}")
    if settings.backend == "transformers":
        print(f"Model: {settings.local_model}")
    else:
        print(f"Ollama URL: {settings.ollama_url}")
    print(f"Safety: {'on' if settings.safety else 'off'}")
    print("\nType your questions (or 'exit'/'quit' to end):")
    while True:
        try:
            line = await asyncio.to_thread(input, "\n> ")
        except EOFError:
            break
        question = line.strip()
        if not question:
            continue
        if question.lower() in EXIT_COMMANDS:
            print("\nGoodbye!")
            break
        try:
            result = await deps.query_service.answer(question, temperature=args.temperature)
        except PipelineError as exc:
            print(f"Error: {exc}")
            continue
        _print_result(result)
    return 0


async def _ingest(deps: AppDependencies, args: argparse.Namespace) -> int:
    root: Path = args.directory
    if not root.is_dir():
        print(f"Error: directory does not exist: {root}", file=sys.stderr)
        return 1
    print(f"Ingesting documents from: {root}")
    print(f"Supported formats: {', '.join(sorted(SUPPORTED_EXTENSIONS))}\n")
    try:
        deps.ingestor.config.with_overrides(args.chunk_size, args.overlap)
    except ValueError as exc:
        print(f"Error: invalid chunk settings: {exc}", file=sys.stderr)
        return 1
    report = await asyncio.to_thread(
        deps.ingest_directory,
        root,
        chunk_tokens=args.chunk_size,
        chunk_overlap=args.overlap,
    )
    if not report.files:
        print("No supported files found in directory")
        return 0
    for path, reason in report.failures.items():
        print(f"  Error: {path.name}: {reason}")
    print(f"\nProcessed {report.succeeded}/{len(report.files)} files, {len(report.chunks)} chunks indexed")
    return 0


async def _health(deps: AppDependencies, args: argparse.Namespace) -> int:
    print("TeamRAG Health Check")
    statuses = await deps.health_check()
    healthy = True
    for status in statuses:
        healthy = healthy and status.healthy
        line = f"[{'ok' if status.healthy else 'FAIL'}] {status.name}"
        if status.latency_ms is not None:
            line += f" ({status.latency_ms:.0f}ms)"
        if status.message:
            line += f" - {status.message}"
        print(line)
    print()
    if healthy:
        print("All services are healthy!")
        return 0
    print("Some services are experiencing issues")
    return 1


async def _reset(deps: AppDependencies, args: argparse.Namespace) -> int:
    print(f"Resetting vector database (collection: {deps.store.collection_name})...")
    await asyncio.to_thread(deps.store.reset)
    print("Vector database reset successfully!")
    print("Run 'teamrag ingest <directory>' to re-index your documents")
    return 0


_COMMANDS = {
    "ask": _ask,
    "chat": _chat,
    "ingest": _ingest,
    "health": _health,
    "reset": _reset,
}


async def _run(settings: Settings, args: argparse.Namespace) -> int:
    deps = build_dependencies(settings)
    try:
        return await _COMMANDS[args.command](deps, args)
    finally:
        await deps.aclose()


def _confirm_reset() -> bool:
    answer = input("This will delete all indexed documents. Continue? (y/N): ")
    return answer.strip().lower() in {"y", "yes"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="teamrag", description="Answer questions from your team documentation.")
    parser.add_argument("--config", type=Path, default=None, help="Optional YAML configuration file")
    parser.add_argument("--safety", choices=("on", "off"), default=None, help="Override the safety gate")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Ask a one-shot question")
    ask.add_argument("question", nargs="+")
    ask.add_argument("--temperature", type=float, default=0.0, help="Override temperature for this question")

    chat = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat.add_argument("--temperature", type=float, default=0.0, help="Override temperature for this session")

    ingest = subparsers.add_parser("ingest", help="Ingest documents from a directory")
    ingest.add_argument("directory", type=Path)
    ingest.add_argument("--chunk-size", type=int, default=0, help="Override chunk size in tokens")
    ingest.add_argument("--overlap", type=int, default=0, help="Override chunk overlap in tokens")

    subparsers.add_parser("health", help="Check health of all services")

    reset = subparsers.add_parser("reset", help="Delete every indexed document")
    reset.add_argument("--collection", default=None, help="Collection to reset instead of the configured one")
    reset.add_argument("-f", "--force", action="store_true", help="Skip the confirmation prompt")

    eval_cli.build_parser(subparsers.add_parser("eval", help="Evaluate answers against a JSONL test set"))

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])
    try:
        settings = load_settings(args)
    except (OSError, ValueError) as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    configure_logging(settings.log_level)

    if args.command == "eval":
        try:
            return eval_cli.execute(args, settings)
        except (FileNotFoundError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    if args.command == "serve":
        import uvicorn

        from teamrag.api.app import create_app

        uvicorn.run(create_app(settings=settings), host=args.host, port=args.port)
        return 0
    if args.command == "reset" and not args.force and not _confirm_reset():
        print("Reset cancelled.")
        return 0
    if args.command == "reset" and args.collection:
        settings = settings.model_copy(update={"collection": args.collection})
    return asyncio.run(_run(settings, args))


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
