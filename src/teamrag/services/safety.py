"""Content safety gating with a Llama Guard style classifier."""

from __future__ import annotations

import re
import time

from teamrag.metrics.observability import PipelineMetrics, get_logger
from teamrag.models import SAFETY_CATEGORIES, GenerationOptions, SafetyVerdict
from teamrag.services.generation import GenerationBackend

UNPARSEABLE_REASON = "Unable to determine safety classification"
REFUSAL_PREFIX = "I can't provide assistance with that request as it may violate content safety guidelines"

_UNSAFE_RE = re.compile(r"unsafe\s*([a-z]\d+)?", re.IGNORECASE)

# Classification must be deterministic and short.
CLASSIFIER_OPTIONS = GenerationOptions(temperature=0.0, max_tokens=100)

_CATEGORY_BLOCK = "\n".join(f"{code}: {description}." for code, description in SAFETY_CATEGORIES.items())

_INPUT_TEMPLATE = """<|begin_of_text|><|start_header_id|>system<|end_header_id|>

You are Llama Guard 3, a content policy classifier. Your task is to classify the following user request into one of the safety categories defined below.

<BEGIN UNSAFE CONTENT CATEGORIES>
{categories}
<END UNSAFE CONTENT CATEGORIES>

<BEGIN CONVERSATION>

<|eot_id|><|start_header_id|>user<|end_header_id|>

{text}<|eot_id|><|start_header_id|>assistant<|end_header_id|>

"""

_OUTPUT_TEMPLATE = """<|begin_of_text|><|start_header_id|>system<|end_header_id|>

You are Llama Guard 3, a content policy classifier. Your task is to classify the following AI assistant response into one of the safety categories defined below.

<BEGIN UNSAFE CONTENT CATEGORIES>
{categories}
<END UNSAFE CONTENT CATEGORIES>

<BEGIN CONVERSATION>

<|eot_id|><|start_header_id|>assistant<|end_header_id|>

{text}<|eot_id|><|start_header_id|>user<|end_header_id|>

Please classify this response.<|eot_id|><|start_header_id|>assistant<|end_header_id|>

"""


def parse_verdict(raw_response: str) -> SafetyVerdict:
    """Interpret a classifier reply of the form ``safe`` or ``unsafe <CODE>``.

    Anything else is treated as unsafe: an unparseable reply never passes.
    """

    response = raw_response.strip()
    if response.lower() == "safe":
        return SafetyVerdict(is_safe=True)

    match = _UNSAFE_RE.search(response)
    if match:
        category = match.group(1).upper() if match.group(1) else None
        reason = SAFETY_CATEGORIES.get(category) if category else None
        return SafetyVerdict(is_safe=False, category=category, reason=reason)

    return SafetyVerdict(is_safe=False, reason=UNPARSEABLE_REASON)


def refusal_message(category: str | None) -> str:
    """Polite refusal, naming the category when it is a known code."""

    description = SAFETY_CATEGORIES.get(category) if category else None
    if description is None:
        return f"{REFUSAL_PREFIX}."
    return f"{REFUSAL_PREFIX} (category: {category} - {description})."


def build_input_prompt(text: str) -> str:
    return _INPUT_TEMPLATE.format(categories=_CATEGORY_BLOCK, text=text)


def build_output_prompt(text: str) -> str:
    return _OUTPUT_TEMPLATE.format(categories=_CATEGORY_BLOCK, text=text)


class SafetyGuard:
    """Screens user questions and model answers through a classifier backend."""

    def __init__(self, classifier: GenerationBackend | None, *, enabled: bool = True) -> None:
        if enabled and classifier is None:
            raise ValueError("an enabled safety guard requires a classifier backend")
        self._classifier = classifier
        self._enabled = enabled
        self._logger = get_logger("safety")

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def check_input(self, text: str) -> SafetyVerdict:
        return await self._classify("input", build_input_prompt(text))

    async def check_output(self, text: str) -> SafetyVerdict:
        return await self._classify("output", build_output_prompt(text))

    async def _classify(self, direction: str, prompt: str) -> SafetyVerdict:
        if not self._enabled:
            return SafetyVerdict(is_safe=True)
        start = time.perf_counter()
        response = await self._classifier.generate(prompt, CLASSIFIER_OPTIONS)
        PipelineMetrics.observe_safety_check(direction, time.perf_counter() - start)
        verdict = parse_verdict(response)
        if not verdict.is_safe:
            self._logger.warning(
                "safety.unsafe",
                direction=direction,
                category=verdict.category,
                reason=verdict.reason,
            )
        return verdict
