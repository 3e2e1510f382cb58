import re
import unittest

from strukt import change, defstruct, field, new
from strukt.changeset import Changeset
from strukt.errors import ConfigurationError
from strukt.rules import grapheme_count

from strukt_fixtures import (
    Account,
    ValidateLengths,
    ValidateNumbers,
    ValidateSets,
    Validations,
)


def _errors(result: object) -> dict[str, list[str]]:
    if isinstance(result, Changeset):
        return result.error_messages()
    return {}


class TestRequired(unittest.TestCase):
    def test_blank_default_fails(self) -> None:
        result = Validations.new({"email": "a@b"})
        self.assertEqual(_errors(result), {"name": ["can't be blank"]})

    def test_blank_after_trim_fails_once(self) -> None:
        result = Validations.new({"name": "   ", "email": "a@b"})
        self.assertEqual(_errors(result)["name"], ["can't be blank"])

    def test_custom_message(self) -> None:
        result = Validations.new({"name": "bob"})
        self.assertEqual(_errors(result), {"email": ["must provide an email"]})

    def test_required_false_never_errors(self) -> None:
        optional = defstruct("Optional", [field("note", "string", required=False)])
        self.assertEqual(optional.__schema__.rules, ())
        self.assertIsInstance(optional.new({"note": ""}), optional)

    def test_trim_disabled(self) -> None:
        padded = defstruct("Padded", [field("note", "string", required={"trim": False})])
        self.assertIsInstance(padded.new({"note": "  "}), padded)
        self.assertEqual(_errors(padded.new({"note": ""})), {"note": ["can't be blank"]})

    def test_skips_fields_with_cast_errors(self) -> None:
        result = Validations.new({"name": ["x"], "email": "a@b"})
        self.assertEqual(_errors(result), {"name": ["is invalid"]})


class TestFormat(unittest.TestCase):
    def test_format(self) -> None:
        self.assertEqual(_errors(Validations.new({"name": "bob", "email": "nope"})), {"email": ["has invalid format"]})
        self.assertIsInstance(Validations.new({"name": "bob", "email": "a@b"}), Validations)

    def test_compiled_pattern_and_message(self) -> None:
        coded = defstruct(
            "Coded",
            [field("code", "string", format={"pattern": re.compile(r"^[A-Z]{3}$"), "message": "bad code"})],
        )
        self.assertEqual(_errors(coded.new({"code": "abc"})), {"code": ["bad code"]})
        self.assertIsInstance(coded.new({"code": "ABC"}), coded)


class TestLooselyTypedFields(unittest.TestCase):
    def test_wrong_shaped_values_are_recorded_not_raised(self) -> None:
        loose = defstruct(
            "Loose",
            [
                field("blob", "any", length={"max": 3}),
                field("code", "any", format=r"^\d+$"),
                field("score", "any", number={"greater_than": 0}),
                field("band", "any", range=(1, 5)),
                field("picks", "any", subset_of=["a", "b"]),
            ],
        )
        result = loose.new({"blob": 5, "code": 5, "score": "x", "band": "x", "picks": 5})
        self.assertEqual(
            _errors(result),
            {
                "blob": ["is invalid"],
                "code": ["has invalid format"],
                "score": ["must be greater than 0"],
                "band": ["must be in the range 1..5"],
                "picks": ["has an invalid entry"],
            },
        )
        self.assertEqual(result.errors_for("blob")[0].validation, "length")

    def test_sized_any_value_is_measured(self) -> None:
        loose = defstruct("LooseSized", [field("blob", "any", length={"max": 3})])
        self.assertEqual(_errors(loose.new({"blob": [1, 2, 3, 4]})), {"blob": ["should have at most 3 item(s)"]})
        self.assertIsInstance(loose.new({"blob": "abc"}), loose)

class TestLength(unittest.TestCase):
    def _params(self, **overrides: str) -> dict[str, str]:
        params = {"exact": "abc", "bounded_graphemes": "a", "bounded_bytes": "a"}
        params.update(overrides)
        return params

    def test_exact_length(self) -> None:
        result = ValidateLengths.new(self._params(exact="ab"))
        self.assertEqual(_errors(result), {"exact": ["must be 3 characters"]})

    def test_graphemes_and_bytes_diverge(self) -> None:
        result = ValidateLengths.new(self._params(bounded_graphemes="\u20ac\u20ac", bounded_bytes="\u20ac\u20ac"))
        self.assertEqual(_errors(result), {"bounded_bytes": ["must be between 1 and 3 bytes"]})

    def test_default_messages(self) -> None:
        sized = defstruct(
            "Sized",
            [
                field("code", "string", length=2),
                field("title", "string", length={"min": 2}),
                field("tags", ("array", "string"), length={"max": 1}),
                field("blob", "binary", length={"max": 1}),
            ],
        )
        result = sized.new({"code": "abc", "title": "a", "tags": ["a", "b"], "blob": b"ab"})
        self.assertEqual(
            _errors(result),
            {
                "code": ["should be 2 character(s)"],
                "title": ["should be at least 2 character(s)"],
                "tags": ["should have at most 1 item(s)"],
                "blob": ["should be at most 1 byte(s)"],
            },
        )
        error = result.errors_for("code")[0]
        self.assertEqual(error.meta, {"kind": "is", "count": 2, "type": "text"})

    def test_codepoints(self) -> None:
        counted = defstruct("Counted", [field("word", "string", length={"max": 1, "count": "codepoints"})])
        self.assertIsInstance(counted.new({"word": "\u00e9"}), counted)
        self.assertEqual(_errors(counted.new({"word": "e\u0301"})), {"word": ["should be at most 1 character(s)"]})

    def test_grapheme_count(self) -> None:
        self.assertEqual(grapheme_count(""), 0)
        self.assertEqual(grapheme_count("abc"), 3)
        self.assertEqual(grapheme_count("e\u0301"), 1)
        self.assertEqual(grapheme_count("\U0001F468\u200d\U0001F469\u200d\U0001F467"), 1)
        self.assertEqual(grapheme_count("\U0001F1FA\U0001F1F8\U0001F1EB\U0001F1F7"), 2)
        self.assertEqual(grapheme_count("\U0001F44D\U0001F3FD"), 1)
        self.assertEqual(grapheme_count("a\r\nb"), 3)


class TestNumbers(unittest.TestCase):
    def test_comparators(self) -> None:
        cases = [
            ({"bounds": 1}, {"bounds": ["must be greater than 1"]}),
            ({"bounds": 100}, {"bounds": ["must be less than 100"]}),
            ({"bounds": 50}, {}),
            ({"bounds_inclusive": 100}, {}),
            ({"bounds_inclusive": 0}, {"bounds_inclusive": ["must be greater than or equal to 1"]}),
            ({"eq": 2}, {"eq": ["must be equal to 1"]}),
            ({"neq": 1}, {"neq": ["must be not equal to 1"]}),
        ]
        for params, expected in cases:
            with self.subTest(params=params):
                self.assertEqual(_errors(ValidateNumbers.new(params)), expected)

    def test_stops_at_first_failing_comparator(self) -> None:
        odd = defstruct("Odd", [field("n", "integer", number={"greater_than": 10, "less_than": 5})])
        self.assertEqual(_errors(odd.new({"n": 7})), {"n": ["must be greater than 10"]})

    def test_bare_number_means_equal_to(self) -> None:
        exact = defstruct("Exact", [field("n", "float", number=1.5)])
        self.assertEqual(_errors(exact.new({"n": 2})), {"n": ["must be equal to 1.5"]})

    def test_range_is_inclusive(self) -> None:
        self.assertEqual(_errors(ValidateNumbers.new({"range": 0})), {"range": ["must be in the range 1..100"]})
        self.assertEqual(_errors(ValidateNumbers.new({"range": 100})), {})
        self.assertEqual(_errors(ValidateNumbers.new({"range": 101})), {"range": ["must be in the range 1..100"]})

    def test_range_pairs(self) -> None:
        ratio = defstruct("Ratio", [field("r", "float", range=(0.0, 1.0))])
        self.assertIsInstance(ratio.new({"r": 1.0}), ratio)
        self.assertEqual(_errors(ratio.new({"r": 1.5})), {"r": ["must be in the range 0.0..1.0"]})

    def test_rules_only_check_changes(self) -> None:
        entity = ValidateNumbers(bounds=0)
        self.assertTrue(change(entity, {"eq": 1}).valid)
        self.assertFalse(change(entity, {"bounds": 1}).valid)


class TestSets(unittest.TestCase):
    def test_membership(self) -> None:
        self.assertEqual(_errors(ValidateSets.new({"one_of": "d"})), {"one_of": ["must be one of [a, b, c]"]})
        self.assertEqual(_errors(ValidateSets.new({"none_of": "a"})), {"none_of": ["cannot be one of [a, b, c]"]})
        self.assertEqual(_errors(ValidateSets.new({"subset_of": ["a", "d"]})), {"subset_of": ["has an invalid entry"]})
        self.assertEqual(_errors(ValidateSets.new({"one_of": "a", "none_of": "d", "subset_of": ["a", "c"]})), {})

    def test_default_messages(self) -> None:
        self.assertEqual(_errors(Account.new({"username": "root"})), {"username": ["is reserved"]})
        picked = defstruct("Picked", [field("pick", "integer", one_of=[1, 2])])
        self.assertEqual(_errors(picked.new({"pick": 3})), {"pick": ["is invalid"]})


class TestRuleShapes(unittest.TestCase):
    def test_malformed_shapes_fail(self) -> None:
        bad = [
            field("a", "string", required="yes"),
            field("a", "string", length="long"),
            field("a", "string", length={"min": -1}),
            field("a", "string", length={"count": "words", "max": 1}),
            field("a", "string", length={"message": "only a message"}),
            field("a", "integer", number={"greater": 1}),
            field("a", "integer", number="one"),
            field("a", "integer", number={}),
            field("a", "integer", range="1..2"),
            field("a", "integer", range=(5, 1)),
            field("a", "integer", range=range(0, 10, 2)),
            field("a", "string", format=5),
            field("a", "string", format="("),
            field("a", "string", one_of="abc"),
            field("a", "string", none_of={"message": "no values"}),
        ]
        for declaration in bad:
            with self.subTest(options=dict(declaration.options)):
                with self.assertRaises(ConfigurationError):
                    defstruct("Bad", [declaration])

    def test_incompatible_types_fail(self) -> None:
        bad = [
            field("a", "integer", format=r"\d"),
            field("a", "integer", length=1),
            field("a", "string", number={"greater_than": 1}),
            field("a", "string", subset_of=["a"]),
        ]
        for declaration in bad:
            with self.subTest(options=dict(declaration.options)):
                with self.assertRaises(ConfigurationError):
                    defstruct("Bad", [declaration])


class TestModuleNew(unittest.TestCase):
    def test_new_accepts_struct_type(self) -> None:
        self.assertIsInstance(new(Validations, {"name": "bob", "email": "a@b", "age": 3}), Validations)


if __name__ == "__main__":
    unittest.main()
