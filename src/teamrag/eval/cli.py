"""CLI for evaluating TeamRAG answers against a JSONL test set."""

from __future__ import annotations

import argparse
import asyncio
import json
import statistics
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from teamrag.config import Settings, get_settings
from teamrag.models import DocumentChunk
from teamrag.runtime import AppDependencies, build_dependencies
from teamrag.services.query import PipelineError, QueryService


@dataclass(frozen=True)
class EvaluationCase:
    question: str
    expected_sources: Sequence[str] = ()


@dataclass(frozen=True)
class EvaluationResult:
    total: int
    average_response_seconds: float
    average_relevance: float
    safety_blocks: int
    failures: int
    source_hit_rate: float | None
    details: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "average_response_seconds": self.average_response_seconds,
            "average_relevance": self.average_relevance,
            "safety_blocks": self.safety_blocks,
            "failures": self.failures,
            "source_hit_rate": self.source_hit_rate,
            "details": self.details,
        }


def load_cases(path: Path) -> list[EvaluationCase]:
    """Read one JSON object per line; blank lines are ignored."""

    if not path.is_file():
        raise FileNotFoundError(f"test file not found: {path}")
    cases: list[EvaluationCase] = []
    for line_number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{path}:{line_number}: invalid JSON: {exc}") from exc
        question = item.get("question") if isinstance(item, dict) else None
        if not question:
            raise ValueError(f"{path}:{line_number}: missing 'question'")
        cases.append(EvaluationCase(question=question, expected_sources=tuple(item.get("expected_sources", ()))))
    return cases


def _source_hit(expected: Sequence[str], sources: Sequence[DocumentChunk]) -> bool:
    wanted = {name.lower() for name in expected}
    for chunk in sources:
        candidates = {chunk.source_path.lower(), Path(chunk.source_path).name.lower(), chunk.source_title.lower()}
        if wanted & candidates:
            return True
    return False


async def evaluate(service: QueryService, cases: Sequence[EvaluationCase], *, top_k: int | None = None) -> EvaluationResult:
    latencies: list[float] = []
    relevances: list[float] = []
    hits: list[bool] = []
    blocks = 0
    failures = 0
    details: list[dict] = []

    for case in cases:
        try:
            result = await service.answer(case.question, top_k=top_k)
        except PipelineError as exc:
            failures += 1
            details.append({"question": case.question, "error": str(exc), "stage": exc.stage.value})
            continue
        latencies.append(result.latency_ms / 1000)
        scores = [chunk.score for chunk in result.sources if chunk.score is not None]
        if scores:
            relevances.append(statistics.fmean(scores))
        if result.blocked:
            blocks += 1
        hit = None
        if case.expected_sources:
            hit = _source_hit(case.expected_sources, result.sources)
            hits.append(hit)
        details.append(
            {
                "question": case.question,
                "answer": result.text,
                "blocked": result.blocked,
                "latency_ms": result.latency_ms,
                "sources": [chunk.source_path for chunk in result.sources],
                "expected_sources": list(case.expected_sources),
                "source_hit": hit,
            },
        )

    return EvaluationResult(
        total=len(cases),
        average_response_seconds=statistics.fmean(latencies) if latencies else 0.0,
        average_relevance=statistics.fmean(relevances) if relevances else 0.0,
        safety_blocks=blocks,
        failures=failures,
        source_hit_rate=(sum(hits) / len(hits)) if hits else None,
        details=details,
    )


def run_evaluation(
    test_file: Path,
    *,
    settings: Settings | None = None,
    dependencies: AppDependencies | None = None,
    top_k: int | None = None,
    json_out: Path | None = None,
) -> EvaluationResult:
    cases = load_cases(test_file)
    deps = dependencies or build_dependencies(settings or get_settings())

    async def _run() -> EvaluationResult:
        try:
            return await evaluate(deps.query_service, cases, top_k=top_k)
        finally:
            if dependencies is None:
                await deps.aclose()

    result = asyncio.run(_run())
    if json_out:
        json_out.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    return result


def format_summary(result: EvaluationResult) -> str:
    lines = [
        "Evaluation Results:",
        f"Questions processed: {result.total}",
        f"Average response time: {result.average_response_seconds:.2f}s",
        f"Average relevance score: {result.average_relevance:.3f}",
    ]
    if result.safety_blocks:
        lines.append(f"Safety blocks: {result.safety_blocks}")
    if result.failures:
        lines.append(f"Failures: {result.failures}")
    if result.source_hit_rate is not None:
        lines.append(f"Source hit rate: {result.source_hit_rate:.2f}")
    return "\n".join(lines)


def build_parser(parser: argparse.ArgumentParser | None = None) -> argparse.ArgumentParser:
    parser = parser or argparse.ArgumentParser(description="Evaluate TeamRAG answers against a test set.")
    parser.add_argument("--test-file", type=Path, default=Path("eval.jsonl"), help="Path to test file in JSONL format")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write a JSON report")
    parser.add_argument("--top-k", type=int, default=None, help="Override the retriever top-k")
    parser.add_argument("--min-hit-rate", type=float, default=None, help="Fail when the source hit rate is lower")
    return parser


def execute(args: argparse.Namespace, settings: Settings) -> int:
    result = run_evaluation(args.test_file, settings=settings, top_k=args.top_k, json_out=args.output)
    print(format_summary(result))
    if args.output:
        print(f"Detailed results saved to: {args.output}")
    if args.min_hit_rate is not None and (result.source_hit_rate or 0.0) < args.min_hit_rate:
        print(
            f"Evaluation failed threshold (hit rate {result.source_hit_rate or 0.0:.2f} vs {args.min_hit_rate})",
            file=sys.stderr,
        )
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    parser.add_argument("--config", type=Path, default=None, help="Optional YAML configuration file")
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])
    settings = Settings.from_yaml(args.config) if args.config else get_settings()
    try:
        return execute(args, settings)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
