from __future__ import annotations

import math
from typing import Sequence

from lesson_agent.domain.lesson.models import LessonSection


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def rescale_section_durations(
    sections: Sequence[LessonSection], total_duration: int
) -> list[LessonSection]:
    """Scale durations proportionally so they sum exactly to `total_duration`.

    Every section but the last is rounded half-up; the last one takes the
    remainder so the sum never drifts. When the model returned no usable
    durations at all, the total is split evenly instead.
    """
    if not sections:
        return []
    durations = [max(int(section.duration or 0), 0) for section in sections]
    current_total = sum(durations)
    if current_total == total_duration:
        return list(sections)

    if current_total == 0:
        share = total_duration // len(sections)
        scaled = [share] * (len(sections) - 1)
    else:
        ratio = total_duration / current_total
        scaled = [_round_half_up(duration * ratio) for duration in durations[:-1]]

    scaled.append(total_duration - sum(scaled))
    return [
        section.model_copy(update={"duration": duration})
        for section, duration in zip(sections, scaled)
    ]
