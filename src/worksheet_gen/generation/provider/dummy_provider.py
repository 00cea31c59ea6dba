"""Deterministic offline provider for development and smoke runs."""

from __future__ import annotations

import itertools
import json
import logging
import re
import threading
from typing import Any

from worksheet_gen.generation.models import TaskType
from worksheet_gen.generation.prompts import parse_breakdown_line, parse_review_count
from worksheet_gen.generation.provider.base import ProviderReply, ProviderRequest, ProviderRole

logger = logging.getLogger(__name__)

_TOPIC = re.compile(r"<user_topic>(.*?)</user_topic>", re.DOTALL)


class DummyContentProvider:
    """Answer every prompt with well-formed tasks of the requested types.

    Generation and fixer prompts end with the required count per type; the
    reply holds exactly that many tasks. Agent prompts get an all-ok report
    covering the stated batch size. Usage is never reported.
    Question texts are numbered per provider instance so batches never repeat.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def complete(self, request: ProviderRequest) -> ProviderReply:
        if request.label == ProviderRole.AGENT:
            count = parse_review_count(request.user_instructions)
            return ProviderReply(text=json.dumps({"tasks": _ok_report(count)}))

        topic_match = _TOPIC.search(request.user_instructions)
        topic = topic_match.group(1).strip() if topic_match else "the topic"
        tasks: list[dict[str, Any]] = []
        for entry in parse_breakdown_line(request.user_instructions):
            for _ in range(entry.count):
                tasks.append(_sample_task(entry.task_type, self._next_number(), topic))
        logger.debug("Dummy provider answering %s with %d tasks", request.label.value, len(tasks))
        if request.label == ProviderRole.FIXER and len(tasks) == 1:
            return ProviderReply(text=json.dumps(tasks[0], ensure_ascii=False))
        return ProviderReply(text=json.dumps({"tasks": tasks}, ensure_ascii=False))

    def _next_number(self) -> int:
        with self._lock:
            return next(self._counter)


def _ok_report(count: int) -> list[dict[str, Any]]:
    return [{"index": index, "status": "ok"} for index in range(count)]


def _sample_task(task_type: TaskType, number: int, topic: str) -> dict[str, Any]:  # noqa: PLR0911
    if task_type == TaskType.SINGLE_CHOICE:
        return {
            "type": task_type.value,
            "question": f"Sample question {number} about {topic}?",
            "options": ["Option A", "Option B", "Option C", "Option D"],
            "correctIndex": 0,
            "explanation": "Option A is the reference answer.",
        }
    if task_type == TaskType.MULTIPLE_CHOICE:
        return {
            "type": task_type.value,
            "question": f"Pick every correct statement {number} about {topic}.",
            "options": ["Statement A", "Statement B", "Statement C", "Statement D"],
            "correctIndices": [0, 2],
        }
    if task_type == TaskType.OPEN_QUESTION:
        return {
            "type": task_type.value,
            "question": f"Explain point {number} of {topic} in your own words.",
            "correctAnswer": f"Reference answer {number}",
            "acceptableVariants": [],
        }
    if task_type == TaskType.MATCHING:
        return {
            "type": task_type.value,
            "instruction": f"Match the terms of set {number} about {topic}.",
            "leftColumn": ["Term A", "Term B", "Term C"],
            "rightColumn": ["Meaning C", "Meaning A", "Meaning B"],
            "correctPairs": [[0, 1], [1, 2], [2, 0]],
        }
    return {
        "type": task_type.value,
        "textWithBlanks": f"Text {number} about {topic}: first ___(1)___, then ___(2)___.",
        "blanks": [
            {"position": 1, "correctAnswer": "alpha", "acceptableVariants": []},
            {"position": 2, "correctAnswer": "beta", "acceptableVariants": []},
        ],
    }
