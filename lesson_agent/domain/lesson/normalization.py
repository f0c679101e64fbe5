from __future__ import annotations

import re

KNOWN_SUBJECTS: tuple[str, ...] = (
    "语文", "数学", "英语", "物理", "化学", "生物", "历史", "地理", "政治",
    "思想品德", "道德与法治", "科学", "信息技术", "音乐", "美术", "体育",
    "Chinese", "Mathematics", "English", "Physics", "Chemistry", "Biology",
    "History", "Geography", "Politics", "Science", "IT", "Music", "Art", "PE",
)

_CHINESE_NUMERALS = ("一", "二", "三", "四", "五", "六", "七", "八", "九")

# Canonical grade labels keyed by school year (1-12).
_CANONICAL_GRADES: dict[int, str] = {
    **{index + 1: f"{numeral}年级" for index, numeral in enumerate(_CHINESE_NUMERALS)},
    10: "高一",
    11: "高二",
    12: "高三",
}

_GRADE_ALIASES: dict[str, int] = {
    "初一": 7, "初二": 8, "初三": 9,
    "七上": 7, "七下": 7, "八上": 8, "八下": 8, "九上": 9, "九下": 9,
    "高一": 10, "高二": 11, "高三": 12,
    "高中一年级": 10, "高中二年级": 11, "高中三年级": 12,
    "小学一年级": 1, "小学二年级": 2, "小学三年级": 3,
    "小学四年级": 4, "小学五年级": 5, "小学六年级": 6,
    "初中一年级": 7, "初中二年级": 8, "初中三年级": 9,
    **{f"{numeral}年级": index + 1 for index, numeral in enumerate(_CHINESE_NUMERALS)},
}

_NUMERIC_GRADE = re.compile(r"^(?:grade\s*)?(\d{1,2})(?:\s*年级|th|st|nd|rd)?$", re.IGNORECASE)


def is_known_subject(subject: str) -> bool:
    needle = subject.strip().lower()
    if not needle:
        return False
    for known in KNOWN_SUBJECTS:
        candidate = known.lower()
        if needle == candidate or candidate in needle or needle in candidate:
            return True
    return False


def normalize_grade(grade: str) -> str:
    """Maps common grade spellings onto one canonical label; unknown input passes through stripped."""
    cleaned = re.sub(r"\s+", " ", grade or "").strip()
    if not cleaned:
        return cleaned
    compact = cleaned.replace(" ", "")
    if compact in _GRADE_ALIASES:
        return _CANONICAL_GRADES[_GRADE_ALIASES[compact]]
    match = _NUMERIC_GRADE.match(cleaned)
    if match:
        year = int(match.group(1))
        if year in _CANONICAL_GRADES:
            return _CANONICAL_GRADES[year]
    return cleaned
