import sys
import unittest
from pathlib import Path

FORM_SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(FORM_SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(FORM_SERVICE_ROOT))

from app.models import FormSchema  # noqa: E402
from app.renderer import FormSession  # noqa: E402
from app.submission import assemble_payload, submit_form  # noqa: E402
from app.validation import (  # noqa: E402
    MSG_INVALID_DATE,
    MSG_INVALID_EMAIL,
    MSG_INVALID_OPTION,
    MSG_MASK_MISMATCH,
    MSG_NOT_A_NUMBER,
    MSG_PATTERN_MISMATCH,
    validate_values,
)

REQUIRED_SCHEMA = {
    "formTitle": "Test Form",
    "fields": [
        {"id": "name", "type": "text", "label": "Name", "required": True,
         "validation": {"requiredMessage": "Name is required"}},
        {"id": "agree", "type": "checkbox", "label": "Agree", "required": True},
        {
            "id": "plan",
            "type": "select",
            "label": "Plan",
            "required": True,
            "options": [{"value": "basic", "label": "Basic"}, {"value": "pro", "label": "Pro"}],
        },
    ],
}


def schema(*fields, title="Form"):
    return FormSchema.model_validate({"formTitle": title, "fields": list(fields)})


class RequiredTests(unittest.TestCase):
    def test_required_messages(self):
        form = FormSchema.model_validate(REQUIRED_SCHEMA)
        errors = validate_values(form.fields, {"agree": False})
        self.assertEqual(errors["name"], "Name is required")
        self.assertEqual(errors["agree"], "Agree is required")
        self.assertEqual(errors["plan"], "Plan is required")

    def test_unchecked_string_and_zero_values_fail_required(self):
        form = schema(
            {"id": "agree", "type": "checkbox", "label": "Agree", "required": True},
            {"id": "notify", "type": "switch", "label": "Notify", "required": True},
        )
        for value in ("false", "off", "0", "", 0, False, None):
            errors = validate_values(form.fields, {"agree": value, "notify": value})
            self.assertEqual(errors, {"agree": "Agree is required", "notify": "Notify is required"}, repr(value))
        for value in ("on", "true", " Yes ", 1, True):
            self.assertEqual(validate_values(form.fields, {"agree": value, "notify": value}), {}, repr(value))

    def test_required_check_agrees_with_payload_coercion(self):
        form = schema({"id": "agree", "type": "checkbox", "label": "Agree", "required": True})
        self.assertFalse(submit_form(form, {"agree": "off"}).ok)
        result = submit_form(form, {"agree": "on"})
        self.assertEqual(result.payload, {"agree": True})

    def test_whitespace_is_empty(self):
        form = FormSchema.model_validate(REQUIRED_SCHEMA)
        errors = validate_values(form.fields, {"name": "   ", "agree": True, "plan": "pro"})
        self.assertEqual(errors, {"name": "Name is required"})

    def test_hidden_required_fields_are_skipped(self):
        form = schema(
            {"id": "age", "type": "number", "label": "Age"},
            {
                "id": "g1",
                "type": "group",
                "label": "Adult details",
                "condition": {"whenField": "age", "operator": "greaterOrEqual", "value": 18},
                "children": [{"id": "license", "type": "text", "label": "Driver License", "required": True}],
            },
        )
        self.assertEqual(validate_values(form.fields, {"age": 17}), {})
        self.assertEqual(validate_values(form.fields, {"age": 18}), {"license": "Driver License is required"})

    def test_display_only_fields_never_fail(self):
        form = schema(
            {"id": "h1", "type": "heading", "label": "Section", "required": True, "heading": {"text": "Section"}},
            {"id": "div1", "type": "divider", "label": "---", "required": True},
        )
        self.assertEqual(validate_values(form.fields, {}), {})


class TypedRuleTests(unittest.TestCase):
    def check(self, field, value):
        form = schema(field)
        return validate_values(form.fields, {field["id"]: value}).get(field["id"])

    def test_email(self):
        field = {"id": "email", "type": "email", "label": "Email"}
        self.assertIsNone(self.check(field, "foo@bar.com"))
        self.assertEqual(self.check(field, "foo@bar"), MSG_INVALID_EMAIL)
        self.assertIsNone(self.check(field, ""))

    def test_number_bounds(self):
        field = {"id": "n", "type": "number", "label": "N", "validation": {"min": 1, "max": 10}}
        self.assertIsNone(self.check(field, "5"))
        self.assertEqual(self.check(field, 0), "Must be at least 1")
        self.assertEqual(self.check(field, "11"), "Must be at most 10")
        self.assertEqual(self.check(field, 10**400), MSG_NOT_A_NUMBER)
        self.assertEqual(self.check(field, "ten"), MSG_NOT_A_NUMBER)

    def test_range_and_currency_fall_back_to_config_bounds(self):
        slider = {"id": "r", "type": "range", "label": "R", "range": {"min": 0, "max": 100}}
        self.assertEqual(self.check(slider, 101), "Must be at most 100")
        money = {"id": "c", "type": "currency", "label": "C", "currency": {"code": "BRL", "min": 5}}
        self.assertEqual(self.check(money, "4,50"), "Must be at least 5")
        self.assertIsNone(self.check(money, "1.234,56"))

    def test_options(self):
        field = {"id": "p", "type": "radio", "label": "P", "options": [{"value": "a", "label": "A"}]}
        self.assertIsNone(self.check(field, "a"))
        self.assertEqual(self.check(field, "b"), MSG_INVALID_OPTION)

    def test_date(self):
        field = {"id": "d", "type": "date", "label": "D"}
        self.assertIsNone(self.check(field, "2024-02-29"))
        self.assertEqual(self.check(field, "2023-02-29"), MSG_INVALID_DATE)
        self.assertEqual(self.check(field, "29/02/2024"), MSG_INVALID_DATE)

    def test_mask(self):
        field = {"id": "cpf", "type": "masked", "label": "CPF", "mask": "999.999.999-99"}
        self.assertIsNone(self.check(field, "123.456.789-09"))
        self.assertEqual(self.check(field, "12345678909"), MSG_MASK_MISMATCH)

    def test_pattern_and_lengths(self):
        field = {"id": "u", "type": "text", "label": "U",
                 "validation": {"pattern": "^[a-z]+$", "minLength": 3, "maxLength": 5}}
        self.assertIsNone(self.check(field, "abcd"))
        self.assertEqual(self.check(field, "ab1"), MSG_PATTERN_MISMATCH)
        self.assertEqual(self.check(field, "ab"), "Must be at least 3 characters")
        self.assertEqual(self.check(field, "abcdef"), "Must be at most 5 characters")

    def test_invalid_pattern_is_ignored(self):
        field = {"id": "u", "type": "text", "label": "U", "validation": {"pattern": "(["}}
        with self.assertLogs("app.validation", level="WARNING"):
            self.assertIsNone(self.check(field, "anything"))

    def test_max_tags(self):
        field = {"id": "t", "type": "tags", "label": "T", "tags": {"separator": ",", "maxTags": 2}}
        self.assertIsNone(self.check(field, ["a", "b"]))
        self.assertEqual(self.check(field, "a, b, c"), "At most 2 tags allowed")


class SubmissionTests(unittest.TestCase):
    def test_blocked_then_single_submission(self):
        session = FormSession(FormSchema.model_validate(REQUIRED_SCHEMA))
        emitted = []
        session.on_submit(emitted.append)

        self.assertIsNone(session.submit())
        self.assertEqual(emitted, [])
        self.assertEqual(session.errors["name"], "Name is required")

        session.set_value("name", "Alice")
        self.assertNotIn("name", session.errors)
        session.set_value("agree", True)
        session.set_value("plan", "pro")

        payload = session.submit()
        self.assertEqual(payload, {"name": "Alice", "agree": True, "plan": "pro"})
        self.assertEqual(emitted, [payload])

    def test_email_submission(self):
        session = FormSession(schema({"id": "email", "type": "email", "label": "Email"}))
        session.set_value("email", "foo@bar")
        self.assertIsNone(session.submit())
        session.set_value("email", "foo@bar.com")
        self.assertEqual(session.submit(), {"email": "foo@bar.com"})

    def test_display_only_keys_excluded(self):
        form = schema(
            {"id": "h1", "type": "heading", "label": "Section", "heading": {"text": "Section", "level": 2}},
            {"id": "div1", "type": "divider", "label": "---"},
            {"id": "username", "type": "text", "label": "Username", "required": True,
             "validation": {"requiredMessage": "Username is required"}},
        )
        self.assertFalse(submit_form(form, {}).ok)
        result = submit_form(form, {"username": "john"})
        self.assertTrue(result.ok)
        self.assertEqual(result.payload, {"username": "john"})

    def test_payload_uses_name_and_coerces(self):
        form = schema(
            {"id": "fld_a", "name": "age", "type": "number", "label": "Age"},
            {"id": "fld_b", "type": "switch", "label": "News"},
            {"id": "fld_c", "type": "currency", "label": "Amount", "currency": {"code": "BRL"}},
            {"id": "fld_d", "type": "range", "label": "Level"},
        )
        payload = assemble_payload(form.fields, {"fld_a": "42", "fld_c": "10.5", "fld_d": ""})
        self.assertEqual(payload, {"age": 42, "fld_b": False, "fld_c": 10.5, "fld_d": None})

    def test_hidden_group_excluded_from_payload(self):
        form = schema(
            {"id": "age", "type": "number", "label": "Age"},
            {
                "id": "g1",
                "type": "group",
                "condition": {"whenField": "age", "operator": "greaterOrEqual", "value": 18},
                "children": [{"id": "license", "type": "text", "label": "License"}],
            },
        )
        self.assertEqual(submit_form(form, {"age": "17", "license": "X1"}).payload, {"age": 17})
        self.assertEqual(submit_form(form, {"age": "18", "license": "X1"}).payload, {"age": 18, "license": "X1"})

    def test_revealed_field_validated_without_being_touched(self):
        form = schema(
            {"id": "age", "type": "number", "label": "Age"},
            {
                "id": "g1",
                "type": "group",
                "condition": {"whenField": "age", "operator": "greaterOrEqual", "value": 18},
                "children": [{"id": "license", "type": "text", "label": "License", "required": True}],
            },
        )
        session = FormSession(form, {"age": 10})
        self.assertEqual(session.submit(), {"age": 10})
        session.set_value("age", 20)
        self.assertIsNone(session.submit())
        self.assertEqual(session.errors, {"license": "License is required"})


if __name__ == "__main__":
    unittest.main()
