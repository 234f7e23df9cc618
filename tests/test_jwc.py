"""Tests for jwc.py: academic affairs parsers and operations."""

import asyncio
import warnings
from urllib.parse import parse_qs

import httpx
import pytest

from csu_portal import jwc
from csu_portal.exceptions import AuthRejected, EmptyField, NetworkError, PageMarkerMissing
from csu_portal.jwc import (
    ClassEntry,
    Grade,
    parse_grades,
    parse_level_exams,
    parse_minor_payments,
    parse_minor_plan,
    parse_minor_registrations,
    parse_rank_row,
    parse_rank_terms,
    parse_student_plan,
    parse_student_profile,
    parse_timetable,
)

PLAN_URL_01 = "http://csujwc.its.csu.edu.cn/jsxsd/fxgl/fxjxjh_query?fxzy=01"
PLAN_URL_02 = "http://csujwc.its.csu.edu.cn/jsxsd/fxgl/fxjxjh_query?fxzy=02"


def cell_html(inner: str) -> str:
    return f"""
    <table id="kbtable">
      <tr><th></th><th>星期一</th></tr>
      <tr><th>第一大节</th><td><div class="kbcontent">{inner}</div></td></tr>
    </table>
    """


def labels(teacher: str, weeks: str, room: str) -> str:
    return (
        f'<font title="老师">{teacher}</font><br/>'
        f'<font title="周次(节次)">{weeks}</font><br/>'
        f'<font title="教室">{room}</font><br/>'
    )


class TestParseGrades:
    def test_two_rows(self, load_fixture):
        grades = parse_grades(load_fixture("grades.html"))

        assert len(grades) == 2
        assert grades[1] == Grade(
            gotten_term="2024-2025-1",
            class_name="DataStructures",
            final_grade="92",
            credit="3",
            class_attribute="Required",
            class_nature="Major",
        )
        assert grades[0].class_name == "高等数学A"

    def test_missing_marker(self):
        with pytest.raises(PageMarkerMissing):
            parse_grades("<html><title>统一身份认证</title></html>")

    def test_short_row_padded_with_warning(self):
        html = """学生个人考试成绩
        <table id="dataList">
          <tr><th>序号</th></tr>
          <tr><td>1</td><td>x</td><td>y</td><td>2024-2025-2</td><td>线性代数</td></tr>
        </table>"""
        with pytest.warns(EmptyField):
            grades = parse_grades(html)
        assert grades[0].class_name == "线性代数"
        assert grades[0].final_grade == ""
        assert grades[0].class_nature == ""

    def test_no_data_notice_row_skipped(self):
        html = """学生个人考试成绩
        <table id="dataList"><tr><th>序号</th></tr><tr><td colspan="9">未查询到数据</td></tr></table>"""
        assert parse_grades(html) == []

    def test_idempotent(self, load_fixture):
        html = load_fixture("grades.html")
        assert parse_grades(html) == parse_grades(html)


class TestParseRank:
    def test_terms(self, load_fixture):
        assert parse_rank_terms(load_fixture("rank_terms.html")) == ["入学以来", "2024-2025-1"]

    def test_row(self, load_fixture):
        entry = parse_rank_row(load_fixture("rank_row.html"), "2024-2025-1")
        assert entry.term == "2024-2025-1"
        assert entry.total_score == "1534.5"
        assert entry.class_rank == "12"
        assert entry.average_score == "87.3"

    def test_missing_row_is_empty(self):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", EmptyField)
            entry = parse_rank_row('<table id="dataList"><tr><th>x</th></tr></table>', "t")
        assert entry.total_score == ""


class TestParseTimetable:
    def test_fixture(self, load_fixture):
        timetable = parse_timetable(load_fixture("timetable.html"))

        assert len(timetable.cells) == 6
        assert timetable.start_week_day == "2024年09月02"
        names = [e.class_name for e in timetable.entries]
        assert names == ["数据结构", "操作系统", "计算机网络"]

        first = timetable.entries[0]
        assert first == ClassEntry(
            class_name="数据结构",
            teacher="张老师",
            weeks="1-16(周)",
            place="A座101",
            weekday=1,
            weekday_name="星期一",
            period="第一大节(01,02小节)",
        )

    def test_six_labels_two_entries_same_slot(self):
        inner = "操作系统<br/>" + labels("李", "1-8(周)", "B202") + "---------<br/>网络<br/>" + labels("王", "9-16(周)", "B203")
        timetable = parse_timetable(cell_html(inner))

        entries = timetable.cells[0]
        assert len(entries) == 2
        assert {(e.weekday, e.period) for e in entries} == {(1, "第一大节")}
        assert [e.class_name for e in entries] == ["操作系统", "网络"]

    def test_three_labels_one_entry(self):
        timetable = parse_timetable(cell_html("数据结构<br/>" + labels("张", "1-16(周)", "A101")))
        assert len(timetable.cells[0]) == 1
        assert timetable.cells[0][0].place == "A101"

    @pytest.mark.parametrize("count", [0, 1, 2, 4, 5, 7, 9])
    def test_other_label_counts_empty(self, count):
        inner = "课程<br/>" + "".join(f"<font>v{i}</font><br/>" for i in range(count))
        timetable = parse_timetable(cell_html(inner))
        assert timetable.cells == ((),)

    def test_untitled_labels_counted(self):
        inner = "课程<br/><font>张</font><br/><font>1-16(周)</font><br/><font>A101</font>"
        entries = parse_timetable(cell_html(inner)).cells[0]
        assert [(e.teacher, e.weeks, e.place) for e in entries] == [("张", "1-16(周)", "A101")]

    def test_titled_labels_preferred_over_extra_fonts(self):
        inner = "课程<br/><font color='red'>调课</font>" + labels("张", "1-16(周)", "A101")
        entries = parse_timetable(cell_html(inner)).cells[0]
        assert len(entries) == 1
        assert entries[0].teacher == "张"

    def test_missing_table(self):
        timetable = parse_timetable("<html></html>")
        assert timetable.cells == ()
        assert timetable.start_week_day == ""

    def test_idempotent(self, load_fixture):
        html = load_fixture("timetable.html")
        assert parse_timetable(html) == parse_timetable(html)


class TestParseLevelExams:
    def test_rows(self, load_fixture):
        exams = parse_level_exams(load_fixture("level_exams.html"))
        assert [e.course for e in exams] == ["大学英语四级", "大学英语六级"]
        assert exams[0].written_score == "560"
        assert exams[0].total_score == "560"
        assert exams[1].exam_date == "2024-06-15"

    def test_missing_marker(self):
        with pytest.raises(PageMarkerMissing):
            parse_level_exams("<html></html>")


class TestParseStudentProfile:
    def test_basic_fields(self, load_fixture):
        profile = parse_student_profile(load_fixture("profile.html"))
        assert profile.get("姓名") == "张三"
        assert profile.get("学号") == "8208000001"
        assert profile.get("班级") == "软件2201"
        assert profile.get("不存在", "-") == "-"
        assert len(profile.fields) == 6

    def test_sections(self, load_fixture):
        profile = parse_student_profile(load_fixture("profile.html"))
        assert len(profile.education) == 1
        assert profile.education[0].organization == "长沙市第一中学"
        assert [m.relation for m in profile.family] == ["父亲", "母亲"]
        assert profile.family[1].phone == "13900000000"
        assert profile.status_changes == ()

    def test_missing_table(self):
        with pytest.raises(PageMarkerMissing):
            parse_student_profile("<html></html>")


class TestParseMinor:
    def test_registrations_resolve_plan_links(self, load_fixture):
        base = "http://csujwc.its.csu.edu.cn/jsxsd/fxgl/fxbmxx_list"
        registrations = parse_minor_registrations(load_fixture("minor_registrations.html"), base)

        assert [r.major for r in registrations] == ["金融学", "法学", "金融学", "英语"]
        assert [r.plan_url for r in registrations] == [PLAN_URL_01, PLAN_URL_02, PLAN_URL_01, ""]
        assert all(r.plan == () for r in registrations)

    def test_registrations_missing_table(self):
        with pytest.raises(PageMarkerMissing):
            parse_minor_registrations("<html></html>")

    def test_payments(self, load_fixture):
        payments = parse_minor_payments(load_fixture("minor_payments.html"))
        assert len(payments) == 1
        assert payments[0].course_name == "货币银行学"
        assert payments[0].fee == "240"
        assert payments[0].paid == "是"

    def test_plan(self, load_fixture):
        plan = parse_minor_plan(load_fixture("minor_plan.html"))
        assert [p.course_id for p in plan] == ["FX0101", "FX0102"]
        assert plan[1].exam_type == "考查"


class TestParseStudentPlan:
    def test_rows(self, load_fixture):
        courses = parse_student_plan(load_fixture("student_plan.html"))
        assert len(courses) == 1
        assert courses[0].course_name == "高等数学A"
        assert courses[0].credit == "5"
        assert courses[0].adjust_reason == ""

    def test_missing_table(self):
        with pytest.raises(PageMarkerMissing):
            parse_student_plan("<html></html>")


class TestOperations:
    def test_fetch_grades_posts_term(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("POST", jwc.GRADE_URL, text=load_fixture("grades.html"))

        grades = asyncio.run(
            jwc.fetch_grades("8208000001", "pw", "2024-2025-1", settings=settings, transport=jwc_upstream.transport)
        )

        assert len(grades) == 2
        request = jwc_upstream.sent("POST", jwc.GRADE_URL)[0]
        assert parse_qs(request.content.decode()) == {"xnxq01id": ["2024-2025-1"]}
        assert request.headers["cookie"] == "JSESSIONID=jwc-session"

    def test_fetch_grades_bad_credentials(self, settings, upstream, login_html):
        upstream.add_cas(login_html, None)
        with pytest.raises(AuthRejected):
            asyncio.run(jwc.fetch_grades("8208000001", "bad", settings=settings, transport=upstream.transport))

    def test_fetch_grades_expired_session(self, settings, jwc_upstream, login_html):
        # Expired session bounces back to the login page
        jwc_upstream.add("POST", jwc.GRADE_URL, text=login_html)
        with pytest.raises(PageMarkerMissing):
            asyncio.run(jwc.fetch_grades("8208000001", "pw", settings=settings, transport=jwc_upstream.transport))

    def test_fetch_rank_one_post_per_term(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("GET", jwc.RANK_URL, text=load_fixture("rank_terms.html"))
        jwc_upstream.add("POST", jwc.RANK_URL, text=load_fixture("rank_row.html"))

        ranks = asyncio.run(jwc.fetch_rank("8208000001", "pw", settings=settings, transport=jwc_upstream.transport))

        assert [r.term for r in ranks] == ["入学以来", "2024-2025-1"]
        posted = [parse_qs(r.content.decode())["xqfw"][0] for r in jwc_upstream.sent("POST", jwc.RANK_URL)]
        assert posted == ["入学以来", "2024-2025-1"]

    def test_fetch_rank_term_failure_aborts(self, settings, jwc_upstream, load_fixture):
        row_html = load_fixture("rank_row.html")

        def handler(request: httpx.Request) -> httpx.Response:
            if parse_qs(request.content.decode())["xqfw"] == ["2024-2025-1"]:
                return httpx.Response(500, text="error")
            return httpx.Response(200, text=row_html)

        jwc_upstream.add("GET", jwc.RANK_URL, text=load_fixture("rank_terms.html"))
        jwc_upstream.add("POST", jwc.RANK_URL, handler)

        with pytest.raises(NetworkError) as excinfo:
            asyncio.run(jwc.fetch_rank("8208000001", "pw", settings=settings, transport=jwc_upstream.transport))

        assert excinfo.value.status_code == 500
        assert len(jwc_upstream.sent("POST", jwc.RANK_URL)) == 2

    def test_fetch_timetable_whole_term_sends_blank_week(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("POST", jwc.CLASS_URL, text=load_fixture("timetable.html"))

        timetable = asyncio.run(
            jwc.fetch_timetable("8208000001", "pw", "2024-2025-1", settings=settings, transport=jwc_upstream.transport)
        )

        assert len(timetable.entries) == 3
        form = parse_qs(jwc_upstream.sent("POST", jwc.CLASS_URL)[0].content.decode(), keep_blank_values=True)
        assert form == {"zc": [""], "xnxq01id": ["2024-2025-1"], "sfFD": ["1"]}

    def test_fetch_timetable_single_week(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("POST", jwc.CLASS_URL, text=load_fixture("timetable.html"))
        asyncio.run(
            jwc.fetch_timetable("8208000001", "pw", "2024-2025-1", "5", settings=settings, transport=jwc_upstream.transport)
        )
        form = parse_qs(jwc_upstream.sent("POST", jwc.CLASS_URL)[0].content.decode())
        assert form["zc"] == ["5"]

    def test_fetch_level_exams(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("GET", jwc.LEVEL_EXAM_URL, text=load_fixture("level_exams.html"))
        exams = asyncio.run(jwc.fetch_level_exams("8208000001", "pw", settings=settings, transport=jwc_upstream.transport))
        assert len(exams) == 2

    def test_fetch_student_profile(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("GET", jwc.PROFILE_URL, text=load_fixture("profile.html"))
        profile = asyncio.run(
            jwc.fetch_student_profile("8208000001", "pw", settings=settings, transport=jwc_upstream.transport)
        )
        assert profile.get("专业") == "软件工程"

    def test_fetch_student_plan(self, settings, jwc_upstream, load_fixture):
        jwc_upstream.add("GET", jwc.STUDENT_PLAN_URL, text=load_fixture("student_plan.html"))
        courses = asyncio.run(
            jwc.fetch_student_plan("8208000001", "pw", settings=settings, transport=jwc_upstream.transport)
        )
        assert courses[0].course_id == "080101"


class TestFetchMinorProgram:
    @pytest.fixture
    def minor_upstream(self, jwc_upstream, load_fixture):
        jwc_upstream.add("GET", jwc.MINOR_REGISTRATION_URL, text=load_fixture("minor_registrations.html"))
        jwc_upstream.add("GET", jwc.MINOR_PAYMENT_URL, text=load_fixture("minor_payments.html"))
        return jwc_upstream

    def fetch(self, settings, upstream, **kwargs):
        return asyncio.run(
            jwc.fetch_minor_program("8208000001", "pw", settings=settings, transport=upstream.transport, **kwargs)
        )

    def test_plans_attached_in_order(self, settings, minor_upstream, load_fixture):
        plan_html = load_fixture("minor_plan.html")
        minor_upstream.add("GET", PLAN_URL_01, lambda request: _plan_response(request, plan_html))

        program = self.fetch(settings, minor_upstream)

        assert [r.major for r in program.registrations] == ["金融学", "法学", "金融学", "英语"]
        assert len(program.registrations[0].plan) == 2
        assert [p.course_id for p in program.registrations[1].plan] == ["FX0101"]
        assert program.registrations[2].plan == program.registrations[0].plan
        assert program.registrations[3].plan == ()
        assert len(program.payments) == 1

    def test_duplicate_plan_url_fetched_once(self, settings, minor_upstream, load_fixture):
        plan_html = load_fixture("minor_plan.html")
        minor_upstream.add("GET", PLAN_URL_01, lambda request: _plan_response(request, plan_html))

        self.fetch(settings, minor_upstream)

        plan_requests = minor_upstream.sent("GET", PLAN_URL_01)
        assert sorted(str(r.url) for r in plan_requests) == [PLAN_URL_01, PLAN_URL_02]

    def test_failed_plan_degrades_to_empty(self, settings, minor_upstream, load_fixture):
        plan_html = load_fixture("minor_plan.html")

        def handler(request):
            if request.url.params["fxzy"] == "02":
                return httpx.Response(500, text="error")
            return _plan_response(request, plan_html)

        minor_upstream.add("GET", PLAN_URL_01, handler)

        program = self.fetch(settings, minor_upstream)

        assert len(program.registrations[0].plan) == 2
        assert program.registrations[1].plan == ()
        assert len(program.registrations) == 4

    def test_without_plans(self, settings, minor_upstream):
        program = self.fetch(settings, minor_upstream, include_plans=False)
        assert all(r.plan == () for r in program.registrations)
        assert not minor_upstream.sent("GET", PLAN_URL_01)

    def test_registration_page_failure_is_fatal(self, settings, jwc_upstream):
        jwc_upstream.add("GET", jwc.MINOR_REGISTRATION_URL, status=500, text="error")
        with pytest.raises(NetworkError):
            self.fetch(settings, jwc_upstream)


def _plan_response(request, plan_html):
    if request.url.params["fxzy"] == "02":
        # Second program has a one-course plan
        start = plan_html.index("<tr><td>2</td>")
        end = plan_html.index("</tr>", start) + len("</tr>")
        return httpx.Response(200, text=plan_html[:start] + plan_html[end:])
    return httpx.Response(200, text=plan_html)
