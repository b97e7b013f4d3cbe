import io
import unittest
from dataclasses import dataclass

from threeblades.renderer import (
    EncodingError,
    JSONRenderer,
    TableRenderer,
    TemplateError,
    new_renderer,
    parse_template,
    render,
    snake_case,
)


def _render(fmt, target) -> str:
    out = io.StringIO()
    render(fmt, target, out)
    return out.getvalue()


class TestRendererSelection(unittest.TestCase):
    def test_json_keyword_selects_json_renderer(self) -> None:
        self.assertIsInstance(new_renderer("json", {}), JSONRenderer)
        self.assertIsInstance(new_renderer("json anything after", {}), JSONRenderer)

    def test_other_formats_select_table_renderer(self) -> None:
        self.assertIsInstance(new_renderer("{{.Name}}", {}), TableRenderer)
        self.assertIsInstance(new_renderer("jsonish", {}), TableRenderer)
        self.assertIsInstance(new_renderer("", {}), TableRenderer)
        self.assertIsInstance(new_renderer(" json", {}), TableRenderer)
        self.assertIsInstance(new_renderer("json\t", {}), TableRenderer)


class TestJSONRenderer(unittest.TestCase):
    def test_indents_with_four_spaces_and_trailing_newline(self) -> None:
        out = _render("json", {"name": "p1", "private": False})
        self.assertEqual(out, '{\n    "name": "p1",\n    "private": false\n}\n')

    def test_single_key(self) -> None:
        self.assertEqual(_render("json", {"Test": "test"}), '{\n    "Test": "test"\n}\n')

    def test_escapes_html_characters(self) -> None:
        out = _render("json", {"script": "<a href=\"x\">&</a>"})
        self.assertEqual(out, '{\n    "script": "\\u003ca href=\\"x\\"\\u003e\\u0026\\u003c/a\\u003e"\n}\n')

    def test_keeps_non_ascii_text(self) -> None:
        self.assertEqual(_render("json", {"name": "caf\u00e9"}), '{\n    "name": "caf\u00e9"\n}\n')

    def test_renders_dataclasses(self) -> None:
        @dataclass
        class Host:
            name: str
            port: int

        self.assertEqual(_render("json", [Host("h1", 22)]), '[\n    {\n        "name": "h1",\n        "port": 22\n    }\n]\n')

    def test_unencodable_value_raises_encoding_error(self) -> None:
        out = io.StringIO()
        with self.assertRaises(EncodingError):
            render("json", {"bad": object()}, out)
        self.assertEqual(out.getvalue(), "")


class TestTableRenderer(unittest.TestCase):
    def test_header_and_one_row_per_item(self) -> None:
        projects = [{"name": "p1", "id": "1"}, {"name": "p2", "id": "2"}]
        self.assertEqual(_render("{{.Name}}\t{{.ID}}", projects), "Name\tID\np1\t1\np2\t2\n")

    def test_typed_fields_on_objects(self) -> None:
        @dataclass
        class Row:
            string: str
            bool: bool
            int: int

        out = _render("{{.String}}\t{{.Bool}}\t{{.Int}}", Row("test", False, 1))
        self.assertEqual(out, "String\tBool\tInt\ntest\tfalse\t1\n")

    def test_header_drops_spaces_and_dots(self) -> None:
        renderer = TableRenderer([], "{{ .Name }} | {{.Owner.Email}}")
        self.assertEqual(renderer.header(), "Name|OwnerEmail")

    def test_empty_list_renders_header_only(self) -> None:
        self.assertEqual(_render("{{.Name}}", []), "Name\n")

    def test_none_renders_header_only(self) -> None:
        self.assertEqual(_render("{{.Name}}", None), "Name\n")

    def test_single_object_renders_one_row(self) -> None:
        self.assertEqual(_render("{{.Name}}:{{.Port}}", {"name": "h1", "port": 8080}), "Name:Port\nh1:8080\n")

    def test_nested_fields_and_camel_case_keys(self) -> None:
        server = {"image_name": "jupyter", "config": {"type": "jupyter"}, "owner": {"email": "a@b.c"}}
        out = _render("{{.ImageName}} {{.Config.Type}} {{.Owner.Email}}", server)
        self.assertEqual(out.splitlines()[1], "jupyter jupyter a@b.c")

    def test_missing_and_null_values(self) -> None:
        out = _render("{{.Name}}|{{.Description}}|{{.Owner.Email}}", {"name": "p1", "description": None})
        self.assertEqual(out.splitlines()[1], "p1|<nil>|<no value>")

    def test_value_formatting(self) -> None:
        row = {"private": True, "tags": ["a", "b"], "meta": {"b": 1, "a": 2}}
        out = _render("{{.Private}} {{.Tags}} {{.Meta}}", row)
        self.assertEqual(out.splitlines()[1], "true [a b] map[a:2 b:1]")

    def test_dot_renders_row_itself(self) -> None:
        self.assertEqual(_render("{{.}}", ["a", "b"]), "\na\nb\n")

    def test_invalid_template_writes_nothing(self) -> None:
        for fmt in ("{{.Name", "{{}}", "{{range .}}{{.Name}}{{end}}"):
            with self.subTest(fmt=fmt):
                out = io.StringIO()
                with self.assertRaises(TemplateError):
                    render(fmt, [{"name": "p1"}], out)
                self.assertEqual(out.getvalue(), "")

    def test_field_on_scalar_row_is_template_error(self) -> None:
        with self.assertRaises(TemplateError):
            _render("{{.Name}}", [42])


class TestParseTemplate(unittest.TestCase):
    def test_splits_literals_and_paths(self) -> None:
        self.assertEqual(parse_template("{{.Name}}\t{{.Owner.Email}}"), [("Name",), "\t", ("Owner", "Email")])


class TestSnakeCase(unittest.TestCase):
    def test_conversions(self) -> None:
        self.assertEqual(snake_case("ImageName"), "image_name")
        self.assertEqual(snake_case("ProjectID"), "project_id")
        self.assertEqual(snake_case("IP"), "ip")
        self.assertEqual(snake_case("HTTPServer"), "http_server")


if __name__ == "__main__":
    unittest.main()
