# ================================================================================
# Response Validator
# ================================================================================
#
# Checks response bodies against a declared ValidationSchema: an ordered list of
# field rules (presence, type, value constraints). Two modes:
#
#   validate(response, schema)  -> response unchanged, or ValidationError for
#                                  the first violated rule (pipeline mode)
#   evaluate(data, schema)      -> every rule's ValidationResult, with a summary
#                                  attached to Allure (report mode)
#
# Field paths use dot notation with optional list indexing:
#   "token", "user.email", "items[0].id", "[2].name"
#
# ================================================================================

from __future__ import annotations

import operator
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import allure
from loguru import logger

from .descriptors import ResponseDescriptor
from .errors import ValidationError


class ValidationType(Enum):
    """Supported rule kinds."""
    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    REGEX_MATCH = "regex_match"
    LENGTH_EQUAL = "length_equal"
    LENGTH_GREATER_THAN = "length_greater_than"
    LENGTH_LESS_THAN = "length_less_than"
    LENGTH_GREATER_THAN_OR_EQUAL = "length_greater_than_or_equal"
    LENGTH_LESS_THAN_OR_EQUAL = "length_less_than_or_equal"
    TYPE_CHECK = "type_check"
    RANGE = "range"
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"


JSON_TYPES: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
    "null": (type(None),),
}
# Python spellings accepted as aliases
JSON_TYPES.update(
    str=JSON_TYPES["string"],
    int=JSON_TYPES["integer"],
    float=(float,),
    bool=JSON_TYPES["boolean"],
    list=JSON_TYPES["array"],
    dict=JSON_TYPES["object"],
)

_MISSING = object()
_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")

# A check returns an error message, or "" when the value satisfies the rule.
Check = Callable[[Any, Any], str]


def _check_type(actual: Any, expected: Any) -> str:
    allowed = JSON_TYPES.get(str(expected).lower())
    if allowed is None:
        return f"Unknown type: {expected}"
    # bool is an int subclass but never a JSON number
    if isinstance(actual, bool) and bool not in allowed:
        ok = False
    else:
        ok = isinstance(actual, allowed)
    return "" if ok else f"Expected type {expected}, got {type(actual).__name__}"


def _check_contains(actual: Any, expected: Any) -> str:
    haystack = actual if isinstance(actual, (list, tuple, dict)) else str(actual)
    needle = expected if isinstance(actual, (list, tuple, dict)) else str(expected)
    return "" if needle in haystack else f"{actual!r} does not contain {expected!r}"


def _check_regex(actual: Any, expected: str) -> str:
    try:
        matched = re.match(expected, str(actual)) is not None
    except re.error as e:
        return f"Invalid regex pattern: {e}"
    return "" if matched else f"{actual!r} does not match {expected!r}"


def _check_range(actual: Any, expected: Mapping[str, Any]) -> str:
    low, high = expected.get("min"), expected.get("max")
    if low is not None and actual < low:
        return f"{actual!r} is below minimum {low!r}"
    if high is not None and actual > high:
        return f"{actual!r} is above maximum {high!r}"
    return ""


def _length_check(compare: Callable[[int, int], bool], symbol: str) -> Check:
    def check(actual: Any, expected: int) -> str:
        size = len(actual) if hasattr(actual, "__len__") else 0
        return "" if compare(size, expected) else f"Expected length {symbol} {expected}, got {size}"
    return check


def _negate(check: Check, message: str) -> Check:
    def negated(actual: Any, expected: Any) -> str:
        return message.format(actual=actual, expected=expected) if not check(actual, expected) else ""
    return negated


def _check_equal(actual: Any, expected: Any) -> str:
    return "" if actual == expected else f"Expected {expected!r}, got {actual!r}"


def _check_member(actual: Any, expected: Any) -> str:
    return "" if actual in expected else f"{actual!r} not in {list(expected)!r}"


CHECKS: Dict[ValidationType, Check] = {
    ValidationType.EQUAL: _check_equal,
    ValidationType.NOT_EQUAL: _negate(_check_equal, "Expected anything but {expected!r}"),
    ValidationType.IS_NULL: lambda actual, _: "" if actual is None else f"Expected null, got {actual!r}",
    ValidationType.IS_NOT_NULL: lambda actual, _: "" if actual is not None else "Expected a value, got null",
    ValidationType.CONTAINS: _check_contains,
    ValidationType.NOT_CONTAINS: _negate(_check_contains, "{actual!r} contains {expected!r}"),
    ValidationType.REGEX_MATCH: _check_regex,
    ValidationType.LENGTH_EQUAL: _length_check(operator.eq, "=="),
    ValidationType.LENGTH_GREATER_THAN: _length_check(operator.gt, ">"),
    ValidationType.LENGTH_LESS_THAN: _length_check(operator.lt, "<"),
    ValidationType.LENGTH_GREATER_THAN_OR_EQUAL: _length_check(operator.ge, ">="),
    ValidationType.LENGTH_LESS_THAN_OR_EQUAL: _length_check(operator.le, "<="),
    ValidationType.TYPE_CHECK: _check_type,
    ValidationType.RANGE: _check_range,
    ValidationType.IN_LIST: _check_member,
    ValidationType.NOT_IN_LIST: _negate(_check_member, "{actual!r} must not be one of {expected!r}"),
}


def resolve_path(data: Any, path: str) -> Any:
    """
    Walk ``path`` through a parsed body.

    Returns the value found, or ``_MISSING`` when a key or index is absent or
    a segment meets the wrong container type. An empty path is the body itself.
    """
    current = data
    for key, index in _PATH_TOKEN.findall(path):
        if index:
            if not isinstance(current, (list, tuple)) or int(index) >= len(current):
                return _MISSING
            current = current[int(index)]
        else:
            if not isinstance(current, dict) or key not in current:
                return _MISSING
            current = current[key]
    return current


@dataclass(frozen=True)
class ValidationRule:
    """
    A single rule applied to one response field.

    Attributes:
        field: Field path (dot notation, list indexes allowed; "" is the body)
        validation_type: Kind of check to run
        expected: Operand for the check (value, pattern, type name, bounds)
        description: Human-readable label for logs and reports
        required: Whether a missing field fails the rule
    """
    field: str
    validation_type: ValidationType
    expected: Any = None
    description: str = ""
    required: bool = True

    @property
    def label(self) -> str:
        return self.description or self.field or "<body>"

    @property
    def expectation(self) -> str:
        if self.validation_type in (ValidationType.IS_NULL, ValidationType.IS_NOT_NULL):
            return self.validation_type.value
        return f"{self.validation_type.value} {self.expected!r}"


@dataclass
class ValidationResult:
    passed: bool
    rule: ValidationRule
    actual_value: Any = None
    error_message: str = ""


@dataclass(frozen=True)
class ValidationSchema:
    """
    Structural contract for a response body. Read-only; rules run in order.

    Example:
        schema = ValidationSchema.from_fields(
            {"token": "string", "user.id": "integer", "user.email": "string"}
        )
        schema = schema.extend(
            ValidationRule("user.email", ValidationType.REGEX_MATCH, r"^[^@]+@[^@]+$")
        )
    """
    rules: Tuple[ValidationRule, ...] = field(default_factory=tuple)
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))

    @classmethod
    def from_fields(cls, fields: Mapping[str, str], name: str = "") -> "ValidationSchema":
        """Required type checks, one per ``path: type name`` entry."""
        return cls(
            rules=tuple(
                ValidationRule(path, ValidationType.TYPE_CHECK, type_name, f"{path} is {type_name}")
                for path, type_name in fields.items()
            ),
            name=name,
        )

    def extend(self, *rules: ValidationRule) -> "ValidationSchema":
        return ValidationSchema(rules=self.rules + tuple(rules), name=self.name)

    def __len__(self) -> int:
        return len(self.rules)


class ResponseValidator:
    """
    Applies ValidationSchema rules to response bodies.

    Usage:
        validator = ResponseValidator()
        schema = ValidationSchema(rules=(
            ValidationRule("success", ValidationType.EQUAL, True),
            ValidationRule("data.id", ValidationType.REGEX_MATCH, r"^usr_\\w+"),
        ))
        response = validator.validate(response, schema)
    """

    def __init__(self, checks: Optional[Mapping[ValidationType, Check]] = None) -> None:
        self._checks = dict(checks or CHECKS)

    def validate(
        self,
        response: ResponseDescriptor,
        schema: Optional[ValidationSchema],
    ) -> ResponseDescriptor:
        """
        Check ``response.body`` against ``schema``.

        Returns the same response object when every rule holds; a ``None``
        schema passes the response through untouched.

        Raises:
            ValidationError: For the first rule the body violates
        """
        if schema is None:
            return response

        for rule in schema.rules:
            result = self.check(response.body, rule)
            if result.passed:
                continue
            logger.warning(f"❌ {rule.label}: {result.error_message}")
            raise ValidationError(
                field_path=rule.field or "<body>",
                expected=rule.expectation,
                actual=result.actual_value,
                message=result.error_message,
            )
        logger.debug(f"Response satisfied {len(schema)} rules")
        return response

    @allure.step("Evaluate response against schema")
    def evaluate(self, response_data: Any, schema: ValidationSchema) -> List[ValidationResult]:
        """Run every rule without stopping early; accepts a body or a ResponseDescriptor."""
        if isinstance(response_data, ResponseDescriptor):
            response_data = response_data.body

        results = [self.check(response_data, rule) for rule in schema.rules]
        for result in results:
            if result.passed:
                logger.debug(f"✅ {result.rule.label}")
            else:
                logger.warning(f"❌ {result.rule.label} - {result.error_message}")

        allure.attach(
            _summary_text(schema, results),
            name=f"Validation Summary {schema.name}".strip(),
            attachment_type=allure.attachment_type.TEXT,
        )
        return results

    def check(self, data: Any, rule: ValidationRule) -> ValidationResult:
        """Apply one rule to a parsed body."""
        actual = resolve_path(data, rule.field)
        if actual is _MISSING:
            if rule.required:
                return ValidationResult(False, rule, error_message=f"Required field not found: {rule.field}")
            return ValidationResult(True, rule)

        try:
            message = self._checks[rule.validation_type](actual, rule.expected)
        except (TypeError, ValueError, AttributeError) as e:
            message = f"Cannot apply {rule.validation_type.value}: {e}"
        return ValidationResult(not message, rule, actual, message)


def _summary_text(schema: ValidationSchema, results: List[ValidationResult]) -> str:
    failed = [r for r in results if not r.passed]
    lines = [f"{len(results) - len(failed)}/{len(results)} rules passed"]
    if schema.name:
        lines.insert(0, f"Schema: {schema.name}")
    lines.extend(f"FAIL {r.rule.field or '<body>'}: {r.error_message}" for r in failed)
    return "\n".join(lines)


__all__ = [
    "ValidationType",
    "ValidationRule",
    "ValidationResult",
    "ValidationSchema",
    "ResponseValidator",
    "CHECKS",
    "resolve_path",
]
