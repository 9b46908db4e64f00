"""
JUnit XML report parsing.

Accepts either a ``<testsuites>`` document or a single ``<testsuite>``.
Suite level counters are taken from the suite attributes when present and
counted from the test cases otherwise.
"""

import xml.etree.ElementTree as ET
from typing import List, Optional

from pydantic import BaseModel, Field


class JUnitParseError(ValueError):
    """Report is not well-formed JUnit XML."""


class TestCase(BaseModel):
    """A single executed test."""

    __test__ = False

    name: str
    classname: str = "default"
    time_ms: float = 0
    status: str = "passed"
    failure: Optional[str] = None


class TestSuite(BaseModel):
    """A group of test cases."""

    __test__ = False

    name: str
    tests: int = 0
    failures: int = 0
    errors: int = 0
    skipped: int = 0
    time_ms: float = 0
    testcases: List[TestCase] = Field(default_factory=list)


class TestReport(BaseModel):
    """Totals across every suite of a report."""

    __test__ = False

    suites: List[TestSuite] = Field(default_factory=list)
    total_tests: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: float = 0

    @property
    def suite_name(self) -> str:
        return self.suites[0].name if self.suites else "Test Suite"


def _int_attr(element: ET.Element, name: str) -> Optional[int]:
    value = element.get(name)
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def _time_ms(element: ET.Element) -> float:
    value = element.get("time")
    if not value:
        return 0
    try:
        return float(value.replace(",", "")) * 1000
    except ValueError:
        return 0


def _parse_testcase(element: ET.Element) -> TestCase:
    status = "passed"
    failure = None

    problem = element.find("failure")
    if problem is None:
        problem = element.find("error")
    if problem is not None:
        status = "failed"
        text = (problem.text or "").strip()
        failure = text or problem.get("message") or "Test failed"
    elif element.find("skipped") is not None:
        status = "skipped"

    return TestCase(
        name=element.get("name", ""),
        classname=element.get("classname") or "default",
        time_ms=_time_ms(element),
        status=status,
        failure=failure,
    )


def _parse_suite(element: ET.Element) -> TestSuite:
    elements = list(element.iter("testcase"))
    testcases = [_parse_testcase(tc) for tc in elements]
    # a case with both children is a failure
    failure_cases = sum(1 for tc in elements if tc.find("failure") is not None)
    error_cases = sum(
        1
        for tc in elements
        if tc.find("failure") is None and tc.find("error") is not None
    )

    def counted(status: str) -> int:
        return sum(1 for tc in testcases if tc.status == status)

    tests = _int_attr(element, "tests")
    failures = _int_attr(element, "failures")
    errors = _int_attr(element, "errors")
    skipped = _int_attr(element, "skipped")

    return TestSuite(
        name=element.get("name") or "Test Suite",
        tests=tests if tests is not None else len(testcases),
        failures=failures if failures is not None else failure_cases,
        errors=errors if errors is not None else error_cases,
        skipped=skipped if skipped is not None else counted("skipped"),
        time_ms=_time_ms(element),
        testcases=testcases,
    )


def parse_junit(report_xml: str) -> TestReport:
    """
    Parse a JUnit XML report.

    Args:
        report_xml: Report document text

    Returns:
        Per-suite details and totals

    Raises:
        JUnitParseError: If the document is not XML or not a JUnit report
    """
    try:
        root = ET.fromstring(report_xml)
    except ET.ParseError as e:
        raise JUnitParseError(f"Invalid JUnit XML: {e}") from e

    if root.tag == "testsuites":
        suite_elements = root.findall("testsuite")
    elif root.tag == "testsuite":
        suite_elements = [root]
    else:
        raise JUnitParseError(f"Unexpected JUnit root element: {root.tag}")

    suites = [_parse_suite(element) for element in suite_elements]

    total = sum(suite.tests for suite in suites)
    failed = sum(suite.failures + suite.errors for suite in suites)
    skipped = sum(suite.skipped for suite in suites)
    duration = _time_ms(root) if root.tag == "testsuites" and root.get("time") else 0
    if not duration:
        duration = sum(suite.time_ms for suite in suites)

    return TestReport(
        suites=suites,
        total_tests=total,
        passed=max(total - failed - skipped, 0),
        failed=failed,
        skipped=skipped,
        duration_ms=duration,
    )
