"""Question sampler: draws and orders a fresh question set for each attempt."""

import random
import string
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlmodel import Session, select

from exam_portal.errors import InsufficientBank
from exam_portal.models import Exam, Question

LABELS = string.ascii_uppercase


@dataclass
class SampledQuestion:
    question: Question
    order: int
    # Original option indices in display order
    option_order: list[int] = field(default_factory=list)

    def display_options(self) -> list[str]:
        options = self.question.option_list()
        return [options[i] for i in self.option_order]

    def label_mapping(self) -> dict[str, str]:
        """Display label -> original label, e.g. {"A": "C", "B": "A", ...}."""
        return label_mapping(self.option_order)


def label_mapping(option_order: Sequence[int]) -> dict[str, str]:
    return {LABELS[pos]: LABELS[orig] for pos, orig in enumerate(option_order)}


def question_pool(session: Session, category: Optional[str] = None) -> list[Question]:
    """The candidate pool in bank order; restricted to ``category`` when given."""
    stmt = select(Question).order_by(Question.id)
    if category:
        stmt = stmt.where(Question.category == category)
    return list(session.exec(stmt).all())


def ensure_pool_size(available: int, required: int) -> None:
    if available < required:
        raise InsufficientBank(available=available, required=required)


def sample_questions(
    pool: Sequence[Question],
    question_count: int,
    shuffle_questions: bool = False,
    shuffle_answers: bool = False,
    rng: Optional[random.Random] = None,
) -> list[SampledQuestion]:
    """Draw ``question_count`` distinct questions uniformly without replacement.

    Without ``shuffle_questions`` the drawn set keeps bank order. With
    ``shuffle_answers`` each question's options get an independent permutation;
    the stored ``Question.options`` are never touched.
    """
    ensure_pool_size(len(pool), question_count)
    rng = rng or random.Random()

    drawn = rng.sample(list(pool), question_count)
    if shuffle_questions:
        rng.shuffle(drawn)
    else:
        drawn.sort(key=lambda q: q.id)

    sampled = []
    for order, question in enumerate(drawn, start=1):
        option_order = list(range(len(question.option_list())))
        if shuffle_answers:
            rng.shuffle(option_order)
        sampled.append(SampledQuestion(question=question, order=order, option_order=option_order))
    return sampled


def draw_for_exam(
    session: Session, exam: Exam, rng: Optional[random.Random] = None
) -> list[SampledQuestion]:
    """Sample for one attempt of ``exam``. Performs no writes."""
    pool = question_pool(session, exam.category)
    return sample_questions(
        pool,
        exam.question_count,
        shuffle_questions=exam.shuffle_questions,
        shuffle_answers=exam.shuffle_answers,
        rng=rng,
    )
