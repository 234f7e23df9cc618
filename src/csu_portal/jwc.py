"""Academic affairs system (教务系统) client.

Grades, major rank, class schedule, level exams, the student profile card,
minor program registrations and the curriculum plan. Every operation logs in
through CAS first; nothing is cached between calls.
"""

import asyncio
import logging
import re
from dataclasses import dataclass

import httpx
from bs4 import NavigableString, Tag

from .auth import portal_session
from .config import ClientSettings, mask
from .exceptions import PageMarkerMissing, PortalError
from .parsing import clean_text, fit_row, load_html, resolve_link, row_cells, table_rows
from .portals import JWC
from .session import HttpSession

logger = logging.getLogger(__name__)

JWC_BASE_URL = "http://csujwc.its.csu.edu.cn/jsxsd/"
GRADE_URL = f"{JWC_BASE_URL}kscj/yscjcx_list"
RANK_URL = f"{JWC_BASE_URL}kscj/zybm_cx"
CLASS_URL = f"{JWC_BASE_URL}xskb/xskb_list.do"
LEVEL_EXAM_URL = f"{JWC_BASE_URL}kscj/djkscj_list"
PROFILE_URL = f"{JWC_BASE_URL}grxx/xsxx"
MINOR_REGISTRATION_URL = f"{JWC_BASE_URL}fxgl/fxbmxx_list"
MINOR_PAYMENT_URL = f"{JWC_BASE_URL}fxgl/fxjfxx_list"
STUDENT_PLAN_URL = f"{JWC_BASE_URL}pyfa/pyfa_query"

GRADE_MARKER = "学生个人考试成绩"
LEVEL_EXAM_MARKER = "等级考试"
DATA_TABLE = "table#dataList"
PROFILE_TABLE = "table#xjkpTable"

# Label nodes inside a timetable cell carry these titles
TIMETABLE_LABEL_TITLES = ("老师", "周次(节次)", "教室")
LABELS_PER_ENTRY = 3
START_WEEK_PATTERN = re.compile(r"第1周\s*(.*?)日至")

PROFILE_SECTIONS = {
    "education": "学习与工作经历",
    "family": "家庭成员",
    "status_changes": "学籍异动",
}


@dataclass(frozen=True)
class Grade:
    """One row of the personal grade list."""

    gotten_term: str
    class_name: str
    final_grade: str
    credit: str
    class_attribute: str
    class_nature: str


@dataclass(frozen=True)
class RankEntry:
    """Aggregate score and major rank for one term."""

    term: str
    total_score: str
    class_rank: str
    average_score: str


@dataclass(frozen=True)
class ClassEntry:
    """One class occupying a timetable slot."""

    class_name: str
    teacher: str
    weeks: str
    place: str
    weekday: int
    weekday_name: str
    period: str


@dataclass(frozen=True)
class Timetable:
    """Weekly grid of class slots plus the term's first-week start date.

    ``cells`` holds one tuple per grid cell, row by row; empty cells are
    empty tuples.
    """

    cells: tuple[tuple[ClassEntry, ...], ...]
    start_week_day: str

    @property
    def entries(self) -> list[ClassEntry]:
        return [entry for cell in self.cells for entry in cell]


@dataclass(frozen=True)
class LevelExam:
    """Level exam result (CET, computer rank exams, ...)."""

    course: str
    written_score: str
    computer_score: str
    total_score: str
    written_level: str
    computer_level: str
    total_level: str
    exam_date: str


@dataclass(frozen=True)
class EducationRecord:
    period: str
    organization: str
    position: str
    witness: str


@dataclass(frozen=True)
class FamilyMember:
    relation: str
    name: str
    organization: str
    position: str
    phone: str


@dataclass(frozen=True)
class StatusChange:
    change_type: str
    change_date: str
    reason: str
    remark: str


@dataclass(frozen=True)
class StudentProfile:
    """Student registration card (学籍卡片)."""

    fields: tuple[tuple[str, str], ...]
    education: tuple[EducationRecord, ...]
    family: tuple[FamilyMember, ...]
    status_changes: tuple[StatusChange, ...]

    def get(self, label: str, default: str = "") -> str:
        """Value of a basic-info field by its label."""
        for key, value in self.fields:
            if key == label:
                return value
        return default


@dataclass(frozen=True)
class MinorPlanEntry:
    index: str
    term: str
    course_id: str
    course_name: str
    credit: str
    hours: str
    exam_type: str
    course_attr: str
    is_exam: str


@dataclass(frozen=True)
class MinorRegistration:
    index: str
    major: str
    department: str
    program_type: str
    status: str
    plan_url: str
    plan: tuple[MinorPlanEntry, ...] = ()


@dataclass(frozen=True)
class MinorPayment:
    index: str
    course_id: str
    course_name: str
    department: str
    class_name: str
    place: str
    time: str
    teacher: str
    credit: str
    hours: str
    fee: str
    paid: str


@dataclass(frozen=True)
class MinorProgram:
    registrations: tuple[MinorRegistration, ...]
    payments: tuple[MinorPayment, ...]


@dataclass(frozen=True)
class PlanCourse:
    """Course in the student's curriculum plan (培养计划)."""

    index: str
    term: str
    course_id: str
    course_name: str
    credit: str
    hours: str
    exam_type: str
    course_attr: str
    is_exam: str
    adjust_reason: str


# --- Parsers ---


def parse_grades(html: str) -> list[Grade]:
    """Parse the personal grade list.

    Raises:
        PageMarkerMissing: If the page is not the grade list.
    """
    if GRADE_MARKER not in html:
        raise PageMarkerMissing("Grade page missing expected marker; session expired or bad credentials")

    rows = table_rows(load_html(html), DATA_TABLE) or []
    grades = []
    for cells in rows:
        cells = fit_row(cells, 9, "grade")
        grades.append(
            Grade(
                gotten_term=cells[3],
                class_name=cells[4],
                final_grade=cells[5],
                credit=cells[6],
                class_attribute=cells[7],
                class_nature=cells[8],
            )
        )
    return grades


def parse_rank_terms(html: str) -> list[str]:
    """Term options offered by the rank query page."""
    soup = load_html(html)
    return [clean_text(option) for option in soup.select("#xqfw option")]


def parse_rank_row(html: str, term: str) -> RankEntry:
    """Read the aggregate row (second row) of a rank result table."""
    rows = load_html(html).select("#dataList tr")
    cells = row_cells(rows[1]) if len(rows) > 1 else []
    cells = fit_row(cells, 4, f"rank {term}")
    return RankEntry(term=term, total_score=cells[1], class_rank=cells[2], average_score=cells[3])


def _is_separator(text: str) -> bool:
    return not text.strip("-").strip()


def _class_name_before(label: Tag) -> str:
    # Class name is the nearest non-separator text preceding the entry's first label
    for sibling in label.previous_siblings:
        if isinstance(sibling, NavigableString):
            text = str(sibling).replace("\u00a0", "").strip()
        elif sibling.name == "font":
            return ""
        else:
            text = clean_text(sibling)
        if text and not _is_separator(text):
            return text
    return ""


def _cell_entries(cell: Tag, weekday: int, weekday_name: str, period: str) -> tuple[ClassEntry, ...]:
    content = cell.select_one("div.kbcontent")
    if content is None:
        return ()

    labels = content.find_all("font")
    titled = [f for f in labels if f.get("title") in TIMETABLE_LABEL_TITLES]
    if titled and len(titled) % LABELS_PER_ENTRY == 0:
        labels = titled

    # Only one or two classes per slot; anything else is treated as empty
    if len(labels) not in (LABELS_PER_ENTRY, 2 * LABELS_PER_ENTRY):
        return ()

    entries = []
    for start in range(0, len(labels), LABELS_PER_ENTRY):
        teacher, weeks, place = (clean_text(f) for f in labels[start : start + LABELS_PER_ENTRY])
        entries.append(
            ClassEntry(
                class_name=_class_name_before(labels[start]),
                teacher=teacher,
                weeks=weeks,
                place=place,
                weekday=weekday,
                weekday_name=weekday_name,
                period=period,
            )
        )
    return tuple(entries)


def parse_timetable(html: str) -> Timetable:
    """Parse the weekly class grid and the first-week start date.

    Args:
        html: Class schedule page

    Returns:
        Timetable; malformed cells yield empty slots.
    """
    soup = load_html(html)
    tables = soup.select("table#kbtable")

    cells: list[tuple[ClassEntry, ...]] = []
    if tables:
        rows = tables[0].find_all("tr")
        weekday_names: list[str] = []
        for row in rows:
            headers = row.find_all("th")
            tds = row.find_all("td")
            if not tds:
                # Header row: corner cell followed by weekday names
                weekday_names = [clean_text(th) for th in headers[1:]]
                continue
            period = clean_text(headers[0]) if headers else ""
            for col, td in enumerate(tds):
                name = weekday_names[col] if col < len(weekday_names) else ""
                cells.append(_cell_entries(td, col + 1, name, period))

    start_week_day = ""
    if len(tables) > 1:
        first_td = tables[1].find("td")
        info = first_td.get_text() if first_td else ""
        match = START_WEEK_PATTERN.search(info)
        if match:
            start_week_day = match.group(1).strip()

    return Timetable(cells=tuple(cells), start_week_day=start_week_day)


def parse_level_exams(html: str) -> list[LevelExam]:
    """Parse level exam results.

    Raises:
        PageMarkerMissing: If the page is not the level exam list.
    """
    if LEVEL_EXAM_MARKER not in html:
        raise PageMarkerMissing("Level exam page missing expected marker")

    exams = []
    for cells in table_rows(load_html(html), DATA_TABLE, skip=2) or []:
        cells = fit_row(cells, 9, "level exam")
        exams.append(
            LevelExam(
                course=cells[1],
                written_score=cells[2],
                computer_score=cells[3],
                total_score=cells[4],
                written_level=cells[5],
                computer_level=cells[6],
                total_level=cells[7],
                exam_date=cells[8],
            )
        )
    return exams


def _section_header(cells: list[str]) -> str | None:
    non_empty = [c for c in cells if c]
    if len(non_empty) != 1:
        return None
    for key, title in PROFILE_SECTIONS.items():
        if title in non_empty[0]:
            return key
    return None


def _basic_fields(rows: list[list[str]]) -> tuple[tuple[str, str], ...]:
    fields = []
    for cells in rows:
        for i in range(0, len(cells) - 1, 2):
            label = cells[i].rstrip(":：")
            if label:
                fields.append((label, cells[i + 1]))
    return tuple(fields)


def parse_student_profile(html: str) -> StudentProfile:
    """Parse the student registration card.

    Sections are located by their header text; rows between one header and
    the next belong to that section (the first of them is its column header).

    Raises:
        PageMarkerMissing: If the profile table is missing.
    """
    table = load_html(html).select_one(PROFILE_TABLE)
    if table is None:
        raise PageMarkerMissing("Student profile table not found")

    rows = [row_cells(tr, ("th", "td")) for tr in table.find_all("tr")]
    positions = []
    for i, cells in enumerate(rows):
        key = _section_header(cells)
        if key:
            positions.append((i, key))

    first_section = positions[0][0] if positions else len(rows)
    sections: dict[str, list[list[str]]] = {key: [] for key in PROFILE_SECTIONS}
    for n, (start, key) in enumerate(positions):
        end = positions[n + 1][0] if n + 1 < len(positions) else len(rows)
        sections[key] = [cells for cells in rows[start + 2 : end] if any(cells)]

    education = tuple(
        EducationRecord(*fit_row(cells, 4, "profile education")[:4]) for cells in sections["education"]
    )
    family = tuple(FamilyMember(*fit_row(cells, 5, "profile family")[:5]) for cells in sections["family"])
    changes = tuple(
        StatusChange(*fit_row(cells, 4, "profile status change")[:4]) for cells in sections["status_changes"]
    )
    return StudentProfile(
        fields=_basic_fields(rows[:first_section]),
        education=education,
        family=family,
        status_changes=changes,
    )


def parse_minor_registrations(html: str, base_url: str = MINOR_REGISTRATION_URL) -> list[MinorRegistration]:
    """Parse minor registrations; plans are attached later.

    Raises:
        PageMarkerMissing: If the registration table is missing.
    """
    table = load_html(html).select_one(DATA_TABLE)
    if table is None:
        raise PageMarkerMissing("Minor registration table not found")

    registrations = []
    for tr in table.find_all("tr")[1:]:
        cells = row_cells(tr)
        if len(cells) < 2:
            continue
        cells = fit_row(cells, 5, "minor registration")
        plan_url = ""
        for anchor in tr.find_all("a"):
            plan_url = resolve_link(anchor.get("href", ""), base_url) or resolve_link(
                anchor.get("onclick", ""), base_url
            )
            if plan_url:
                break
        registrations.append(
            MinorRegistration(
                index=cells[0],
                major=cells[1],
                department=cells[2],
                program_type=cells[3],
                status=cells[4],
                plan_url=plan_url,
            )
        )
    return registrations


def parse_minor_payments(html: str) -> list[MinorPayment]:
    """Parse minor course payment rows."""
    payments = []
    for cells in table_rows(load_html(html), DATA_TABLE) or []:
        payments.append(MinorPayment(*fit_row(cells, 12, "minor payment")[:12]))
    return payments


def parse_minor_plan(html: str) -> list[MinorPlanEntry]:
    """Parse one registration's course plan."""
    return [
        MinorPlanEntry(*fit_row(cells, 9, "minor plan")[:9])
        for cells in table_rows(load_html(html), DATA_TABLE) or []
    ]


def parse_student_plan(html: str) -> list[PlanCourse]:
    """Parse the curriculum plan.

    Raises:
        PageMarkerMissing: If the plan table is missing.
    """
    rows = table_rows(load_html(html), DATA_TABLE)
    if rows is None:
        raise PageMarkerMissing("Curriculum plan table not found")
    return [PlanCourse(*fit_row(cells, 10, "student plan")[:10]) for cells in rows]


# --- Operations ---


async def fetch_grades(
    student_id: str,
    password: str,
    term: str = "",
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[Grade]:
    """Fetch grades, optionally for one term.

    Args:
        student_id: Student ID
        password: Unified-auth password
        term: Term such as "2024-2025-1"; empty for all terms

    Returns:
        List of Grade records
    """
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.post(GRADE_URL, data={"xnxq01id": term})
    grades = parse_grades(response.text)
    logger.debug("grades for %s term=%r: %d rows", mask(student_id), term, len(grades))
    return grades


async def fetch_rank(
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[RankEntry]:
    """Fetch aggregate score and rank for every term offered.

    One GET discovers the terms, then one POST per term, in order.
    """
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.get(RANK_URL)
        terms = parse_rank_terms(response.text)
        logger.debug("rank terms for %s: %s", mask(student_id), terms)

        ranks = []
        for term in terms:
            term_response = await session.post(RANK_URL, data={"xqfw": term})
            ranks.append(parse_rank_row(term_response.text, term))
    logger.debug("rank for %s: %d terms", mask(student_id), len(ranks))
    return ranks


async def fetch_timetable(
    student_id: str,
    password: str,
    term: str,
    week: str = "0",
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Timetable:
    """Fetch the class schedule.

    Args:
        student_id: Student ID
        password: Unified-auth password
        term: Term such as "2024-2025-1"
        week: Week number; "0" means the whole term
    """
    form = {"zc": "" if week == "0" else week, "xnxq01id": term, "sfFD": "1"}
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.post(CLASS_URL, data=form)
    timetable = parse_timetable(response.text)
    logger.debug(
        "timetable for %s term=%r week=%r: %d classes, start %r",
        mask(student_id),
        term,
        week,
        len(timetable.entries),
        timetable.start_week_day,
    )
    return timetable


async def fetch_level_exams(
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[LevelExam]:
    """Fetch level exam results."""
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.get(LEVEL_EXAM_URL)
    exams = parse_level_exams(response.text)
    logger.debug("level exams for %s: %d rows", mask(student_id), len(exams))
    return exams


async def fetch_student_profile(
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StudentProfile:
    """Fetch the student registration card."""
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.get(PROFILE_URL)
    profile = parse_student_profile(response.text)
    logger.debug(
        "profile for %s: %d fields, %d/%d/%d section rows",
        mask(student_id),
        len(profile.fields),
        len(profile.education),
        len(profile.family),
        len(profile.status_changes),
    )
    return profile


async def _fetch_plans(session: HttpSession, registrations: list[MinorRegistration]) -> list[MinorRegistration]:
    """Attach plans to registrations, fetching each distinct plan URL once."""
    tasks: dict[str, asyncio.Task] = {}

    async def fetch_plan(url: str) -> tuple[MinorPlanEntry, ...]:
        response = await session.get(url)
        return tuple(parse_minor_plan(response.text))

    for registration in registrations:
        if registration.plan_url and registration.plan_url not in tasks:
            tasks[registration.plan_url] = asyncio.ensure_future(fetch_plan(registration.plan_url))

    results = await asyncio.gather(*tasks.values(), return_exceptions=True)
    plans: dict[str, tuple[MinorPlanEntry, ...]] = {}
    for url, result in zip(tasks, results):
        if isinstance(result, PortalError):
            logger.warning("minor plan %s failed: %s", url, result)
            plans[url] = ()
        elif isinstance(result, BaseException):
            raise result
        else:
            plans[url] = result

    return [
        MinorRegistration(
            index=r.index,
            major=r.major,
            department=r.department,
            program_type=r.program_type,
            status=r.status,
            plan_url=r.plan_url,
            plan=plans.get(r.plan_url, ()),
        )
        for r in registrations
    ]


async def fetch_minor_program(
    student_id: str,
    password: str,
    include_plans: bool = True,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MinorProgram:
    """Fetch minor registrations (with their course plans) and payments.

    Plan pages are fetched concurrently. A failed plan fetch leaves that
    registration's plan empty instead of failing the whole call.
    """
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        reg_response = await session.get(MINOR_REGISTRATION_URL)
        registrations = parse_minor_registrations(reg_response.text, str(reg_response.url))
        pay_response = await session.get(MINOR_PAYMENT_URL)
        payments = parse_minor_payments(pay_response.text)
        if include_plans:
            registrations = await _fetch_plans(session, registrations)

    logger.debug(
        "minor program for %s: %d registrations, %d payments",
        mask(student_id),
        len(registrations),
        len(payments),
    )
    return MinorProgram(registrations=tuple(registrations), payments=tuple(payments))


async def fetch_student_plan(
    student_id: str,
    password: str,
    *,
    settings: ClientSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[PlanCourse]:
    """Fetch the curriculum plan."""
    async with portal_session(JWC, student_id, password, settings=settings, transport=transport) as session:
        response = await session.get(STUDENT_PLAN_URL)
    courses = parse_student_plan(response.text)
    logger.debug("student plan for %s: %d courses", mask(student_id), len(courses))
    return courses
