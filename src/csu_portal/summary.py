"""Markdown grade summary."""

import logging
from collections import OrderedDict

import httpx

from .config import ClientSettings, mask
from .jwc import Grade, fetch_grades

logger = logging.getLogger(__name__)


def _number(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def _format_number(value: float) -> str:
    return f"{value:g}" if value == int(value) else f"{value:.2f}"


def weighted_average(grades: list[Grade]) -> float | None:
    """Credit-weighted average over grades that are numeric.

    Letter or pass/fail grades (优秀, 合格, ...) and rows without a numeric
    credit are left out. Returns None when nothing qualifies.
    """
    total_credit = 0.0
    total_points = 0.0
    for grade in grades:
        score = _number(grade.final_grade)
        credit = _number(grade.credit)
        if score is None or not credit:
            continue
        total_credit += credit
        total_points += score * credit
    if not total_credit:
        return None
    return total_points / total_credit


def grade_summary_markdown(grades: list[Grade]) -> str:
    """Render grades as Markdown, one table per term in first-seen order."""
    by_term: OrderedDict[str, list[Grade]] = OrderedDict()
    for grade in grades:
        by_term.setdefault(grade.gotten_term or "未知学期", []).append(grade)

    lines = ["# 成绩汇总", ""]
    if not by_term:
        lines.append("*暂无成绩*")
        return "\n".join(lines)

    for term, term_grades in by_term.items():
        credits = sum(_number(g.credit) or 0.0 for g in term_grades)
        average = weighted_average(term_grades)

        lines.append(f"## {term}")
        lines.append("")
        lines.append("| 课程 | 成绩 | 学分 | 属性 | 性质 |")
        lines.append("| --- | --- | --- | --- | --- |")
        for g in term_grades:
            lines.append(f"| {g.class_name} | {g.final_grade} | {g.credit} | {g.class_attribute} | {g.class_nature} |")
        lines.append("")
        summary = f"**学分合计**: {_format_number(credits)}"
        if average is not None:
            summary += f"  **加权平均**: {average:.2f}"
        lines.append(summary)
        lines.append("")

    overall = weighted_average(grades)
    if overall is not None:
        lines.append(f"**总加权平均**: {overall:.2f}")

    return "\n".join(lines).rstrip() + "\n"


async def fetch_grade_summary(
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Fetch grades for all terms and render the Markdown summary."""
    grades = await fetch_grades(student_id, password, settings=settings, transport=transport)
    logger.debug("grade summary for %s over %d rows", mask(student_id), len(grades))
    return grade_summary_markdown(grades)
