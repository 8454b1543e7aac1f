"""Expected tenant catalog -- the structural and integrity source of truth.

Static, versioned description of what every tenant schema must contain:
tables with their columns, declared relationships, uniqueness groups,
cross-table and cross-field rules, and the indexes created at provisioning.
Validators read these definitions; the SQLAlchemy models in
``src.tenancy.models.tenant`` must agree with EXPECTED_TABLES.
"""

from __future__ import annotations

from dataclasses import dataclass

CATALOG_VERSION = 4


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: str  # information_schema.columns.data_type
    nullable: bool


@dataclass(frozen=True)
class IndexSpec:
    name: str
    table: str
    columns: tuple[str, ...]
    where: str | None = None


@dataclass(frozen=True)
class ForeignKeyRule:
    table: str
    column: str
    reference_table: str
    reference_column: str = "id"

    @property
    def description(self) -> str:
        return f"{self.table}.{self.column} -> {self.reference_table}.{self.reference_column}"


@dataclass(frozen=True)
class UniqueRule:
    table: str
    columns: tuple[str, ...]
    description: str


@dataclass(frozen=True)
class ConsistencyRule:
    """Rows of ``table`` must match a ``reference_table`` row on every column pair.

    The first pair is the link itself (e.g. grades.enrollment_id = enrollments.id);
    the remaining pairs must agree on the joined row.
    """

    description: str
    table: str
    reference_table: str
    column_pairs: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class RangeRule:
    table: str
    column: str
    minimum: float
    maximum: float


@dataclass(frozen=True)
class ComputedFieldRule:
    """``target`` must equal ``numerator / denominator * scale`` within tolerance."""

    table: str
    target: str
    numerator: str
    denominator: str
    scale: float = 100.0
    tolerance: float = 0.01


@dataclass(frozen=True)
class FutureDateRule:
    table: str
    column: str


@dataclass(frozen=True)
class PopulationRule:
    """Counts parent rows with no child rows. Informational only."""

    name: str
    parent_table: str
    child_table: str
    child_column: str
    parent_column: str = "id"


_TIMESTAMPS = (
    ColumnSpec("created_at", "timestamp with time zone", True),
    ColumnSpec("updated_at", "timestamp with time zone", True),
)

EXPECTED_TABLES: dict[str, tuple[ColumnSpec, ...]] = {
    "students": (
        ColumnSpec("id", "bigint", False),
        ColumnSpec("student_id", "character varying", False),
        ColumnSpec("first_name", "character varying", False),
        ColumnSpec("last_name", "character varying", False),
        ColumnSpec("email", "character varying", False),
        ColumnSpec("phone", "character varying", True),
        ColumnSpec("date_of_birth", "date", True),
        ColumnSpec("status", "character varying", False),
        *_TIMESTAMPS,
    ),
    "courses": (
        ColumnSpec("id", "bigint", False),
        ColumnSpec("course_code", "character varying", False),
        ColumnSpec("title", "character varying", False),
        ColumnSpec("description", "text", True),
        ColumnSpec("credits", "integer", False),
        ColumnSpec("global_course_id", "bigint", True),
        ColumnSpec("status", "character varying", False),
        *_TIMESTAMPS,
    ),
    "enrollments": (
        ColumnSpec("id", "bigint", False),
        ColumnSpec("student_id", "bigint", False),
        ColumnSpec("course_id", "bigint", False),
        ColumnSpec("status", "character varying", False),
        ColumnSpec("semester", "character varying", False),
        ColumnSpec("academic_year", "character varying", False),
        ColumnSpec("enrolled_at", "timestamp with time zone", True),
        *_TIMESTAMPS,
    ),
    "grades": (
        ColumnSpec("id", "bigint", False),
        ColumnSpec("student_id", "bigint", False),
        ColumnSpec("course_id", "bigint", False),
        ColumnSpec("enrollment_id", "bigint", False),
        ColumnSpec("assessment_type", "character varying", False),
        ColumnSpec("assessment_name", "character varying", False),
        ColumnSpec("points_earned", "numeric", True),
        ColumnSpec("points_possible", "numeric", False),
        ColumnSpec("percentage", "numeric", True),
        ColumnSpec("letter_grade", "character varying", True),
        *_TIMESTAMPS,
    ),
    "activity_logs": (
        ColumnSpec("id", "bigint", False),
        ColumnSpec("log_name", "character varying", True),
        ColumnSpec("description", "text", False),
        ColumnSpec("subject_type", "character varying", True),
        ColumnSpec("subject_id", "bigint", True),
        ColumnSpec("causer_type", "character varying", True),
        ColumnSpec("causer_id", "bigint", True),
        ColumnSpec("properties", "json", True),
        ColumnSpec("event", "character varying", True),
        *_TIMESTAMPS,
    ),
}

REQUIRED_TABLES: tuple[str, ...] = tuple(EXPECTED_TABLES)

# Tables compared row-for-row against the legacy shared representation
MIGRATED_TABLES: tuple[str, ...] = REQUIRED_TABLES

TENANT_INDEXES: tuple[IndexSpec, ...] = (
    IndexSpec("idx_students_email", "students", ("email",)),
    IndexSpec("idx_students_student_id", "students", ("student_id",)),
    IndexSpec("idx_students_status", "students", ("status",)),
    IndexSpec("idx_courses_code", "courses", ("course_code",)),
    IndexSpec("idx_courses_status", "courses", ("status",)),
    IndexSpec("idx_enrollments_student", "enrollments", ("student_id",)),
    IndexSpec("idx_enrollments_course", "enrollments", ("course_id",)),
    IndexSpec("idx_enrollments_status", "enrollments", ("status",)),
    IndexSpec("idx_enrollments_semester", "enrollments", ("semester", "academic_year")),
    IndexSpec("idx_grades_enrollment", "grades", ("enrollment_id",)),
    IndexSpec("idx_grades_student_course", "grades", ("student_id", "course_id")),
    IndexSpec("idx_activity_logs_subject", "activity_logs", ("subject_type", "subject_id")),
    IndexSpec("idx_activity_logs_causer", "activity_logs", ("causer_type", "causer_id")),
    IndexSpec("idx_activity_logs_created_at", "activity_logs", ("created_at",)),
)

FOREIGN_KEYS: tuple[ForeignKeyRule, ...] = (
    ForeignKeyRule("enrollments", "student_id", "students"),
    ForeignKeyRule("enrollments", "course_id", "courses"),
    ForeignKeyRule("grades", "student_id", "students"),
    ForeignKeyRule("grades", "course_id", "courses"),
    ForeignKeyRule("grades", "enrollment_id", "enrollments"),
)

UNIQUE_GROUPS: tuple[UniqueRule, ...] = (
    UniqueRule("students", ("email",), "student email"),
    UniqueRule("students", ("student_id",), "student ID"),
    UniqueRule("courses", ("course_code",), "course code"),
    UniqueRule("enrollments", ("student_id", "course_id", "semester", "academic_year"), "enrollment combination"),
)

CONSISTENCY_RULES: tuple[ConsistencyRule, ...] = (
    ConsistencyRule(
        "grades with inconsistent enrollment data",
        "grades",
        "enrollments",
        (("enrollment_id", "id"), ("student_id", "student_id"), ("course_id", "course_id")),
    ),
)

RANGE_RULES: tuple[RangeRule, ...] = (RangeRule("grades", "percentage", 0, 100),)

COMPUTED_FIELD_RULES: tuple[ComputedFieldRule, ...] = (
    ComputedFieldRule("grades", "percentage", "points_earned", "points_possible"),
)

FUTURE_DATE_RULES: tuple[FutureDateRule, ...] = (FutureDateRule("enrollments", "enrolled_at"),)

POPULATION_RULES: tuple[PopulationRule, ...] = (
    PopulationRule("students_without_enrollments", "students", "enrollments", "student_id"),
    PopulationRule("courses_without_enrollments", "courses", "enrollments", "course_id"),
    PopulationRule("enrollments_without_grades", "enrollments", "grades", "enrollment_id"),
)

# Expected type -> actual types accepted without a warning
TYPE_COMPATIBILITY: dict[str, tuple[str, ...]] = {
    "bigint": ("bigint", "integer"),
    "integer": ("integer", "bigint"),
    "character varying": ("character varying", "varchar", "text"),
    "text": ("text", "character varying"),
    "timestamp with time zone": ("timestamp with time zone", "timestamp without time zone", "timestamp"),
    "timestamp without time zone": ("timestamp without time zone", "timestamp with time zone", "timestamp"),
    "numeric": ("numeric", "decimal", "real", "double precision"),
    "json": ("json", "jsonb"),
}


def is_compatible_type(actual: str, expected: str) -> bool:
    return actual in TYPE_COMPATIBILITY.get(expected, (expected,))
