"""Tests for IntegrityValidator: orphans, duplicates, consistency, anomalies."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from src.tenancy.core.context import ContextSwitcher
from src.tenancy.core.errors import IntegrityViolation
from src.tenancy.schemas.tenant import CreateSchemaOptions
from src.tenancy.services.provisioning import SchemaProvisioner
from src.tenancy.validation.integrity import IntegrityValidator

from tests.conftest import school_data

SCHEMA = "tenant_acme123"


def grade(grade_id, enrollment_id, student_id, course_id, earned="45", possible="50", percentage="90"):
    return {
        "id": grade_id,
        "student_id": student_id,
        "course_id": course_id,
        "enrollment_id": enrollment_id,
        "assessment_type": "exam",
        "assessment_name": "Midterm",
        "points_earned": Decimal(earned),
        "points_possible": Decimal(possible),
        "percentage": Decimal(percentage) if percentage is not None else None,
    }


@pytest_asyncio.fixture
async def school(catalog):
    options = CreateSchemaOptions(initial_data=school_data(students=10, enrollments=12))
    await SchemaProvisioner(catalog, ContextSwitcher(catalog, "public")).create(SCHEMA, options)
    return catalog


class TestCleanSchema:
    @pytest.mark.asyncio
    async def test_no_findings(self, school):
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.valid is True
        assert report.errors == []
        assert report.warnings == []
        assert report.skipped == []
        assert all(count == 0 for count in report.checks.values())


class TestOrphans:
    @pytest.mark.asyncio
    async def test_single_orphan_enrollment(self, school):
        await school.insert_rows(
            SCHEMA,
            "enrollments",
            [{"id": 99, "student_id": 404, "course_id": 1, "status": "enrolled",
              "semester": "fall", "academic_year": "2025-2026"}],
        )
        report = await IntegrityValidator(school).validate(SCHEMA)

        assert report.errors == ["Found 1 orphaned records in enrollments.student_id"]
        assert len(report.orphaned_records) == 1
        finding = report.orphaned_records[0]
        assert (finding.table, finding.column, finding.reference_table) == ("enrollments", "student_id", "students")
        assert finding.count >= 1

    @pytest.mark.asyncio
    async def test_null_child_is_not_orphan(self, school):
        school.rows(SCHEMA, "enrollments")[0]["course_id"] = None
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.orphaned_records == []


class TestDuplicates:
    @pytest.mark.asyncio
    async def test_duplicate_email_group(self, school):
        students = school.rows(SCHEMA, "students")
        students[1]["email"] = students[0]["email"]

        report = await IntegrityValidator(school).validate(SCHEMA)

        assert report.errors == ["Duplicate student email found in students"]
        assert len(report.duplicates) == 1
        finding = report.duplicates[0]
        assert finding.count == 1
        assert finding.examples == [{"email": "student1@acme.edu", "duplicate_count": 2}]

    @pytest.mark.asyncio
    async def test_examples_capped(self, school):
        for row in school.rows(SCHEMA, "courses"):
            row["course_code"] = "SAME"
        school.rows(SCHEMA, "students")[0]["email"] = "x@acme.edu"
        for index, row in enumerate(school.rows(SCHEMA, "students")):
            row["student_id"] = f"DUP{index // 2}"

        report = await IntegrityValidator(school, example_limit=2).validate(SCHEMA)

        by_description = {finding.description: finding for finding in report.duplicates}
        assert by_description["student ID"].count == 5
        assert len(by_description["student ID"].examples) == 2
        assert by_description["course code"].count == 1


class TestCrossTableChecks:
    @pytest.mark.asyncio
    async def test_inconsistent_grade_is_error(self, school):
        # enrollment 1 is student 1 / course 1
        await school.insert_rows(SCHEMA, "grades", [grade(1, 1, 1, 1), grade(2, 1, 2, 1)])
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.errors == ["Found 1 grades with inconsistent enrollment data"]

    @pytest.mark.asyncio
    async def test_out_of_range_percentage_is_error(self, school):
        await school.insert_rows(SCHEMA, "grades", [grade(1, 1, 1, 1, earned="60", possible="50", percentage="120")])
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.errors == ["Found 1 grades with invalid percentage (outside 0..100)"]

    @pytest.mark.asyncio
    async def test_miscalculated_percentage_is_warning(self, school):
        await school.insert_rows(SCHEMA, "grades", [grade(1, 1, 1, 1, percentage="80")])
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.valid is True
        assert report.warnings == ["Found 1 grades with incorrect percentage calculations"]

    @pytest.mark.asyncio
    async def test_percentage_within_tolerance(self, school):
        await school.insert_rows(SCHEMA, "grades", [grade(1, 1, 1, 1, earned="1", possible="3", percentage="33.33")])
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.warnings == []

    @pytest.mark.asyncio
    async def test_future_enrollment_is_warning(self, school):
        school.rows(SCHEMA, "enrollments")[0]["enrolled_at"] = datetime.now(timezone.utc) + timedelta(days=30)
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.valid is True
        assert report.warnings == ["Found 1 enrollments with future enrolled_at"]


class TestMissingTables:
    @pytest.mark.asyncio
    async def test_rules_on_missing_table_are_skipped(self, school):
        del school.schemas[SCHEMA]["grades"]
        report = await IntegrityValidator(school).validate(SCHEMA)
        assert report.errors == []
        assert "orphans:grades.enrollment_id -> enrollments.id" in report.skipped
        assert "consistency:grades->enrollments" in report.skipped

    @pytest.mark.asyncio
    async def test_raise_for_errors(self, school):
        school.rows(SCHEMA, "enrollments")[0]["student_id"] = 777
        report = await IntegrityValidator(school).validate(SCHEMA)
        with pytest.raises(IntegrityViolation, match="orphaned"):
            report.raise_for_errors()
