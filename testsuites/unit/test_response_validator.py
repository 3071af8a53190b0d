import pytest

from resilient_client import (
    ResponseDescriptor,
    ResponseValidator,
    ValidationError,
    ValidationRule,
    ValidationSchema,
    ValidationType,
)

USER_SCHEMA = ValidationSchema.from_fields(
    {"id": "integer", "name": "string", "roles": "array"}, name="user"
)


def _response(body):
    return ResponseDescriptor(status=200, body=body)


def test_schema_none_passes_response_through():
    response = _response({"anything": True})
    assert ResponseValidator().validate(response, None) is response


def test_conforming_body_passes():
    response = _response({"id": 1, "name": "Ann", "roles": ["qa"], "extra": "ignored"})
    assert ResponseValidator().validate(response, USER_SCHEMA) is response


def test_missing_required_field_reports_path_and_null_actual():
    with pytest.raises(ValidationError) as exc_info:
        ResponseValidator().validate(_response({"id": 1, "roles": []}), USER_SCHEMA)

    assert exc_info.value.field_path == "name"
    assert exc_info.value.actual is None


def test_type_mismatch_reports_expected_and_actual():
    with pytest.raises(ValidationError) as exc_info:
        ResponseValidator().validate(_response({"id": "1", "name": "Ann", "roles": []}), USER_SCHEMA)

    error = exc_info.value
    assert error.field_path == "id"
    assert error.actual == "1"
    assert "integer" in error.expected


def test_booleans_are_not_numbers():
    schema = ValidationSchema.from_fields({"count": "integer"})
    with pytest.raises(ValidationError):
        ResponseValidator().validate(_response({"count": True}), schema)


def test_nested_and_indexed_paths():
    schema = ValidationSchema(
        rules=(
            ValidationRule("data.items[0].id", ValidationType.EQUAL, 7),
            ValidationRule("data.items", ValidationType.LENGTH_EQUAL, 2),
            ValidationRule("data.status", ValidationType.IN_LIST, ["active", "pending"]),
            ValidationRule("data.email", ValidationType.REGEX_MATCH, r"^[^@]+@[^@]+$"),
            ValidationRule("data.score", ValidationType.RANGE, {"min": 0, "max": 100}),
            ValidationRule("data.note", ValidationType.IS_NULL, required=False),
        )
    )
    body = {
        "data": {
            "items": [{"id": 7}, {"id": 8}],
            "status": "active",
            "email": "qa@example.com",
            "score": 88,
        }
    }
    assert ResponseValidator().validate(_response(body), schema).body == body


def test_first_violated_rule_wins():
    schema = ValidationSchema.from_fields({"a": "string"}).extend(
        ValidationRule("b", ValidationType.EQUAL, 1)
    )
    with pytest.raises(ValidationError) as exc_info:
        ResponseValidator().validate(_response({"a": 1, "b": 2}), schema)
    assert exc_info.value.field_path == "a"


def test_whole_body_rule():
    schema = ValidationSchema(rules=(ValidationRule("", ValidationType.TYPE_CHECK, "array"),))
    with pytest.raises(ValidationError) as exc_info:
        ResponseValidator().validate(_response({"not": "a list"}), schema)
    assert exc_info.value.field_path == "<body>"


def test_evaluate_reports_every_rule():
    results = ResponseValidator().evaluate({"id": "x", "name": "Ann"}, USER_SCHEMA)

    assert [r.passed for r in results] == [False, True, False]
    assert results[2].error_message == "Required field not found: roles"


def test_resolve_path_walks_keys_and_indexes():
    from resilient_client.response_validator import _MISSING, resolve_path

    body = [{"name": "a"}, {"name": "b", "tags": ["x"]}]
    assert resolve_path(body, "[1].name") == "b"
    assert resolve_path(body, "[1].tags[0]") == "x"
    assert resolve_path(body, "") is body
    assert resolve_path(body, "[5].name") is _MISSING
    assert resolve_path({"a": 1}, "a.b") is _MISSING


@pytest.mark.parametrize(
    "rule, passed",
    [
        (ValidationRule("status", ValidationType.NOT_EQUAL, "deleted"), True),
        (ValidationRule("status", ValidationType.NOT_IN_LIST, ["active"]), False),
        (ValidationRule("tags", ValidationType.NOT_CONTAINS, "beta"), True),
        (ValidationRule("tags", ValidationType.LENGTH_GREATER_THAN_OR_EQUAL, 2), True),
        (ValidationRule("status", ValidationType.REGEX_MATCH, "("), False),
    ],
)
def test_single_rule_outcomes(rule, passed):
    body = {"status": "active", "tags": ["alpha", "gamma"]}
    assert ResponseValidator().check(body, rule).passed is passed
