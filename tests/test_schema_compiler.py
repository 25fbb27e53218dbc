"""
Tests for the schema compiler.

Tests DDL parsing, neutral type mapping, domain assignment, view column
resolution and ordinal stability.
"""

import pytest

from rulegate.core.errors import (
    CompileReferenceError,
    CompileSyntaxError,
    CompileTypeError,
    DuplicateDefinitionError,
)
from rulegate.core.types import NeutralType, TargetKind
from rulegate.schema import ModelIR, SchemaCompiler, SchemaParser
from rulegate.schema.service import compile_schema_text, model_name, resource_name


class TestNaming:
    """Test table/view name conversion."""

    def test_model_name_singularizes(self):
        assert model_name("users") == "User"
        assert model_name("order_items") == "OrderItem"
        assert model_name("categories") == "Category"
        assert model_name("addresses") == "Address"

    def test_resource_name(self):
        assert resource_name("course_availability_view") == "course-availability-view"


class TestSchemaParser:
    """Test raw DDL parsing."""

    def test_domain_markers(self, schema_paths):
        """Statements take the nearest preceding domain marker."""
        parsed = SchemaParser().parse_file(schema_paths[0])
        domains = {t.name: t.domain for t in parsed.tables}
        assert domains == {
            "users": "auth",
            "roles": "auth",
            "incidents": "support",
            "invoices": "finance",
            "courses": "academics",
            "enrollments": "academics",
        }
        assert parsed.markers[0].description == "identity and access"

    def test_non_ddl_statements_skipped(self, schema_paths):
        """CREATE INDEX and other statements do not produce tables."""
        parsed = SchemaParser().parse_file(schema_paths[0])
        assert len(parsed.tables) == 6
        assert parsed.views == []

    def test_table_level_primary_key(self, schema_paths):
        parsed = SchemaParser().parse_file(schema_paths[0])
        invoices = next(t for t in parsed.tables if t.name == "invoices")
        keys = {c.name: c.primary_key_position for c in invoices.columns if c.is_primary_key}
        assert keys == {"invoice_id": 1, "line_no": 2}
        assert [c.name for c in invoices.columns] == [
            "invoice_id", "line_no", "amount", "currency", "discount_rate"
        ]

    def test_unknown_type_located(self):
        """An unknown native type is a type error pointing at the column."""
        sql = "CREATE TABLE places (\n    id INT,\n    geo GEOMETRY\n);"
        with pytest.raises(CompileTypeError) as exc_info:
            SchemaParser().parse_text(sql, source="places.sql")
        assert exc_info.value.line == 3
        assert exc_info.value.column == 5
        assert "GEOMETRY" in str(exc_info.value)
        assert str(exc_info.value).startswith("places.sql:3:5:")

    def test_column_named_like_constraint_keyword(self):
        sql = "CREATE TABLE tokens (key_id INT, index_no INT, PRIMARY KEY (key_id));"
        table = SchemaParser().parse_text(sql).tables[0]
        assert [c.name for c in table.columns] == ["key_id", "index_no"]
        assert table.columns[0].is_primary_key

        with pytest.raises(CompileTypeError, match="UUID"):
            SchemaParser().parse_text("CREATE TABLE tokens (id INT, key_id UUID);")

    def test_view_without_from(self):
        with pytest.raises(CompileSyntaxError):
            SchemaParser().parse_text("CREATE VIEW constants AS SELECT 1 AS one;")

    def test_view_with_union_rejected(self):
        sql = "CREATE VIEW v AS SELECT id FROM users UNION SELECT id FROM roles;"
        with pytest.raises(CompileSyntaxError, match="set operations"):
            SchemaParser().parse_text(sql)

    def test_view_filter_clauses_recorded(self, schema_paths):
        parsed = SchemaParser().parse_file(schema_paths[1])
        view = parsed.views[0]
        assert view.name == "course_availability_view"
        assert [(s.table, s.alias) for s in view.sources] == [("courses", "c"), ("enrollments", "e")]
        assert view.filter_clauses == [
            "e.course_id = c.id",
            "c.department = 'science'",
            "c.id, c.title, c.capacity",
        ]


class TestSchemaCompiler:
    """Test Model IR construction."""

    def test_models_per_domain(self, model_ir):
        assert list(model_ir.domains) == ["auth", "support", "finance", "academics"]
        auth = model_ir.domains["auth"]
        assert [m.name for m in auth.models] == ["User", "Role"]
        user = auth.models[0]
        assert user.source_table == "users"
        assert user.resource == "users"
        assert user.kind is TargetKind.MODEL

    def test_neutral_types(self, model_ir):
        user = model_ir.find_target("auth", "users")
        assert user.get_field("id").type is NeutralType.INT64
        assert user.get_field("is_active").type is NeutralType.BOOL
        assert user.get_field("login_attempts").type is NeutralType.INT32
        assert user.get_field("created_at").type is NeutralType.DATETIME

        incident = model_ir.find_target("support", "incidents")
        assert incident.get_field("opened_on").type is NeutralType.DATE

        invoice = model_ir.find_target("finance", "Invoice")
        amount = invoice.get_field("amount")
        assert amount.type is NeutralType.DECIMAL
        assert (amount.precision, amount.scale) == (12, 2)
        assert invoice.get_field("discount_rate").type is NeutralType.FLOAT64
        assert invoice.get_field("currency").type is NeutralType.STRING

    def test_nullability(self, model_ir):
        incident = model_ir.find_target("support", "incidents")
        assert incident.get_field("owner").nullable is True
        assert incident.get_field("title").nullable is False
        assert incident.get_field("id").nullable is False

    def test_primary_key_order(self, model_ir):
        invoice = model_ir.find_target("finance", "invoices")
        assert invoice.primary_key == ["invoice_id", "line_no"]
        role = model_ir.find_target("auth", "roles")
        assert role.primary_key == ["id"]

    def test_ordinals_follow_declaration_order(self, model_ir):
        user = model_ir.find_target("auth", "users")
        assert [f.ordinal for f in user.fields] == list(range(1, 8))

    def test_view_projected_types(self, model_ir):
        """Aggregates and arithmetic resolve to their documented types."""
        view = model_ir.find_target("academics", "course_availability_view", TargetKind.VIEW)
        assert view.name == "CourseAvailabilityView"
        assert view.kind is TargetKind.VIEW
        types = {f.name: (f.type, f.nullable) for f in view.fields}
        assert types == {
            "course_id": (NeutralType.INT32, False),
            "title": (NeutralType.STRING, False),
            "available_seats": (NeutralType.INT64, False),
            "enrolled_count": (NeutralType.INT64, False),
            "average_grade": (NeutralType.FLOAT64, True),
            "top_grade": (NeutralType.DECIMAL, True),
            "grade_total": (NeutralType.DECIMAL, True),
        }
        assert view.get_field("top_grade").scale == 2

    def test_view_excludes_join_and_filter_columns(self, model_ir):
        view = model_ir.find_target("academics", "course_availability_view", "view")
        assert "department" not in view.field_names
        assert "capacity" not in view.field_names
        assert view.referenced_columns == (
            "enrollments.course_id",
            "courses.department",
            "courses.capacity",
        )

    def test_view_in_other_domain(self, model_ir):
        view = model_ir.find_target("support", "open_incident_view", "view")
        assert view.field_names == ["id", "title", "severity_level", "owner"]
        assert view.referenced_columns == ("incidents.status",)

    def test_model_and_view_namespaces_are_separate(self, model_ir):
        assert model_ir.find_target("academics", "course_availability_view") is None
        assert model_ir.find_target("auth", "users", TargetKind.VIEW) is None

    def test_default_domain(self):
        model_ir = compile_schema_text("CREATE TABLE widgets (id INT);", default_domain="inventory")
        assert list(model_ir.domains) == ["inventory"]

    def test_domain_map_wins_over_marker(self, schema_paths):
        parsed = [SchemaParser().parse_file(p) for p in schema_paths]
        model_ir = SchemaCompiler("default", domain_map={"users": "identity"}).compile(parsed)
        assert model_ir.find_target("identity", "users") is not None
        assert model_ir.find_target("auth", "users") is None
        assert model_ir.find_target("auth", "roles") is not None

    def test_duplicate_model(self):
        sql = "CREATE TABLE users (id INT);\nCREATE TABLE users (id INT, name TEXT);"
        with pytest.raises(DuplicateDefinitionError) as exc_info:
            compile_schema_text(sql, default_domain="test")
        assert exc_info.value.line == 2

    def test_same_name_in_different_domains(self):
        sql = (
            "-- billing domain\nCREATE TABLE accounts (id INT);\n"
            "-- crm domain\nCREATE TABLE accounts (id INT);"
        )
        model_ir = compile_schema_text(sql, default_domain="test")
        assert set(model_ir.domains) == {"billing", "crm"}

    def test_duplicate_column(self):
        with pytest.raises(DuplicateDefinitionError):
            compile_schema_text("CREATE TABLE t (id INT, ID BIGINT);", default_domain="test")


class TestViewResolution:
    """Test view column resolution edge cases."""

    BASE = (
        "CREATE TABLE courses (id INT PRIMARY KEY, title TEXT NOT NULL, capacity INT, fee DECIMAL(8,2));\n"
        "CREATE TABLE enrollments (id INT PRIMARY KEY, course_id INT, grade FLOAT);\n"
    )

    def _view(self, select: str):
        model_ir = compile_schema_text(self.BASE + f"CREATE VIEW v AS {select};", default_domain="test")
        return model_ir.find_target("test", "v", "view")

    SAME_NAME = (
        "-- auth domain\nCREATE TABLE users (id INT PRIMARY KEY);\n"
        "-- billing domain\nCREATE TABLE users (id VARCHAR(36) PRIMARY KEY);\n"
    )

    def test_same_table_name_in_two_domains(self):
        sql = self.SAME_NAME + (
            "-- auth domain\nCREATE VIEW auth_users AS SELECT id FROM users;\n"
            "-- billing domain\nCREATE VIEW billing_users AS SELECT id FROM users;\n"
        )
        model_ir = compile_schema_text(sql, default_domain="test")
        auth_view = model_ir.find_target("auth", "auth_users", "view")
        billing_view = model_ir.find_target("billing", "billing_users", "view")
        assert auth_view.get_field("id").type is NeutralType.INT32
        assert billing_view.get_field("id").type is NeutralType.STRING

    def test_ambiguous_table_from_other_domain(self):
        sql = self.SAME_NAME + "-- reports domain\nCREATE VIEW all_users AS SELECT id FROM users;\n"
        with pytest.raises(CompileReferenceError, match="ambiguous"):
            compile_schema_text(sql, default_domain="test")

    def test_table_from_other_domain(self):
        sql = (
            "-- auth domain\nCREATE TABLE users (id INT PRIMARY KEY);\n"
            "-- reports domain\nCREATE VIEW user_ids AS SELECT id FROM users;\n"
        )
        view = compile_schema_text(sql, default_domain="test").find_target("reports", "user_ids", "view")
        assert view.get_field("id").type is NeutralType.INT32

    def test_select_star(self):
        view = self._view("SELECT * FROM courses")
        assert view.field_names == ["id", "title", "capacity", "fee"]

    def test_column_list_renames(self):
        model_ir = compile_schema_text(
            self.BASE + "CREATE VIEW v (course, name) AS SELECT id, title FROM courses;",
            default_domain="test",
        )
        view = model_ir.find_target("test", "v", "view")
        assert view.field_names == ["course", "name"]

    def test_integer_division_is_float(self):
        view = self._view("SELECT capacity / 2 AS half FROM courses")
        assert view.get_field("half").type is NeutralType.FLOAT64

    def test_arithmetic_widens(self):
        view = self._view("SELECT fee * capacity AS total FROM courses")
        assert view.get_field("total").type is NeutralType.DECIMAL

    def test_literal_projection(self):
        view = self._view("SELECT id, 'active' AS state FROM courses")
        assert view.get_field("state").type is NeutralType.STRING

    def test_unknown_table(self):
        with pytest.raises(CompileReferenceError, match="unknown table"):
            self._view("SELECT id FROM sections")

    def test_unresolved_column(self):
        with pytest.raises(CompileReferenceError, match="unresolved column 'room'") as exc_info:
            self._view("SELECT room FROM courses")
        assert exc_info.value.line == 3

    def test_ambiguous_column(self):
        with pytest.raises(CompileReferenceError, match="ambiguous"):
            self._view("SELECT id FROM courses c JOIN enrollments e ON e.course_id = c.id")

    def test_unknown_alias(self):
        with pytest.raises(CompileReferenceError, match="alias 'x'"):
            self._view("SELECT x.id FROM courses c")

    def test_unknown_function(self):
        with pytest.raises(CompileReferenceError, match="unknown function 'UPPER'"):
            self._view("SELECT UPPER(title) AS loud FROM courses")

    def test_non_numeric_arithmetic(self):
        with pytest.raises(CompileTypeError):
            self._view("SELECT title + 1 AS odd FROM courses")

    def test_expression_needs_alias(self):
        with pytest.raises(CompileReferenceError, match="needs an alias"):
            self._view("SELECT COUNT(*) FROM courses")

    def test_view_over_view(self):
        sql = (
            self.BASE
            + "CREATE VIEW large_courses AS SELECT id, title, capacity FROM courses WHERE capacity > 100;\n"
            + "CREATE VIEW large_course_titles AS SELECT title FROM large_courses;"
        )
        model_ir = compile_schema_text(sql, default_domain="test")
        view = model_ir.find_target("test", "large_course_titles", "view")
        assert view.field_names == ["title"]

    def test_derived_table_rejected(self):
        with pytest.raises(CompileSyntaxError, match="derived tables"):
            self._view("SELECT id FROM (SELECT id FROM courses) sub")


class TestOrdinalStability:
    """Test ordinals across recompilation."""

    def test_existing_fields_keep_ordinals(self):
        first = compile_schema_text("CREATE TABLE items (a INT, b INT, c INT);", default_domain="test")
        second = compile_schema_text(
            "CREATE TABLE items (a INT, c INT, d INT);", default_domain="test", previous=first
        )
        item = second.find_target("test", "items")
        assert {f.name: f.ordinal for f in item.fields} == {"a": 1, "c": 3, "d": 4}

    def test_ordinals_survive_yaml(self):
        first = compile_schema_text("CREATE TABLE items (a INT, b INT);", default_domain="test")
        reloaded = ModelIR.from_yaml(first.to_yaml())
        second = compile_schema_text(
            "CREATE TABLE items (x INT, b INT, a INT);", default_domain="test", previous=reloaded
        )
        item = second.find_target("test", "items")
        assert [f.ordinal for f in item.fields] == [3, 2, 1]
