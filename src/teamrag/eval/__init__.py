"""Evaluation harness for TeamRAG answers."""

from .cli import EvaluationCase, EvaluationResult, evaluate, load_cases, main, run_evaluation

__all__ = ["EvaluationCase", "EvaluationResult", "evaluate", "load_cases", "main", "run_evaluation"]
