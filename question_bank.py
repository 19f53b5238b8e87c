"""JSON question bank loading, validation and syncing into the content store."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from schemas import DIFFICULTIES, Question

logger = logging.getLogger(__name__)

DEFAULT_PATH = Path(__file__).resolve().parent / "data" / "questions.json"


class QuestionBankError(ValueError):
    """Raised when an entry of the JSON bank fails validation."""


class QuestionBank:
    """Validated multiple-choice questions read from a JSON list."""

    REQUIRED_FIELDS = ("id", "topic", "difficulty", "question_text", "choices", "correct_choice")

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        self.path = Path(path or os.getenv("QUESTION_BANK_PATH") or DEFAULT_PATH)
        self._questions: List[Question] = []
        self._load()

    # ------------------------------------------------------------------
    # loading & validation
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if not self.path.exists():
            raise FileNotFoundError(f"Question bank file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            try:
                raw = json.load(fh)
            except json.JSONDecodeError as exc:
                raise QuestionBankError(f"Question bank is not valid JSON: {exc}") from exc

        if not isinstance(raw, list):
            raise QuestionBankError("Question bank root must be a JSON list")

        questions: List[Question] = []
        seen_ids: set = set()
        for entry in raw:
            if not isinstance(entry, dict):
                raise QuestionBankError("Each question must be an object")

            for field in self.REQUIRED_FIELDS:
                if field not in entry or entry[field] in (None, "", []):
                    raise QuestionBankError(f"Question {entry.get('id')} missing required field '{field}'")

            question_id = str(entry["id"])
            if question_id in seen_ids:
                raise QuestionBankError(f"Duplicate question id detected: {question_id}")
            seen_ids.add(question_id)

            difficulty = str(entry["difficulty"]).lower()
            if difficulty not in DIFFICULTIES:
                raise QuestionBankError(f"Question {question_id} has unknown difficulty '{difficulty}'")

            choices = entry["choices"]
            if not isinstance(choices, list) or len(choices) < 2:
                raise QuestionBankError(f"Question {question_id} needs at least two choices")

            letters = [str(choice.get("letter", "")).strip().upper() for choice in choices if isinstance(choice, dict)]
            if len(letters) != len(choices) or len(set(letters)) != len(letters) or "" in letters:
                raise QuestionBankError(f"Question {question_id} choices need unique letters")

            correct = str(entry["correct_choice"]).strip().upper()
            if correct not in letters:
                raise QuestionBankError(
                    f"Question {question_id} correct_choice '{correct}' is not one of {', '.join(letters)}"
                )

            untagged = [
                letter
                for letter, choice in zip(letters, choices)
                if letter != correct and not str(choice.get("weakness_tag") or "").strip()
            ]
            if untagged:
                logger.debug("Question %s distractors without weakness tag: %s", question_id, ", ".join(untagged))

            try:
                question = Question.model_validate(
                    {
                        "id": question_id,
                        "subject": str(entry.get("subject") or "math").lower(),
                        "topic": str(entry["topic"]).lower(),
                        "difficulty": difficulty,
                        "question_text": str(entry["question_text"]),
                        "choices": choices,
                        "correct_choice": correct,
                        "explanation": entry.get("explanation"),
                        "is_active": bool(entry.get("is_active", True)),
                    }
                )
            except ValidationError as exc:
                raise QuestionBankError(f"Question {question_id} is invalid: {exc}") from exc
            questions.append(question)

        self._questions = questions

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    def __len__(self) -> int:
        return len(self._questions)

    def coverage(self) -> Dict[str, Dict[str, int]]:
        """Question counts per topic and difficulty."""
        result: Dict[str, Dict[str, int]] = {}
        for question in self._questions:
            bucket = result.setdefault(question.topic, {level: 0 for level in DIFFICULTIES})
            bucket[question.difficulty] += 1
        return result

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def sync(self, store: Any, now: Optional[datetime] = None) -> int:
        """Upsert every question into ``store``; serve statistics are preserved."""
        with store.transaction():
            for question in self._questions:
                store.upsert_question(question, now)
        logger.info("Synced %s questions from %s", len(self._questions), self.path)
        return len(self._questions)
