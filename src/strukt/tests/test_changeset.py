import unittest
from datetime import datetime

from strukt import change, commit, defstruct, embeds_many, field, new, timestamps, validate
from strukt.changeset import Changeset, FieldError, cast
from strukt.errors import InvalidParamsError, UnknownFieldError

from strukt_fixtures import (
    Account,
    AltPrimaryKey,
    Embedded,
    Simple,
    Upload,
    ValidateRequiredEmbed,
    Validations,
)


def _messages(changeset: Changeset, name: str) -> list[str]:
    return [error.message for error in changeset.errors_for(name)]


class TestCast(unittest.TestCase):
    def test_new_builds_entity(self) -> None:
        entity = Simple.new({"name": "alice"})
        self.assertIsInstance(entity, Simple)
        self.assertEqual(entity.name, "alice")
        self.assertEqual(len(entity.uuid), 36)

    def test_params_forms(self) -> None:
        self.assertEqual(cast(Simple, None, [("name", "a")], "insert").changes["name"], "a")
        entity = Simple.new({"name": "a"})
        self.assertEqual(cast(Simple, None, entity, "insert").changes["name"], "a")
        with self.assertRaises(InvalidParamsError):
            cast(Simple, None, 42, "insert")
        with self.assertRaises(InvalidParamsError):
            cast(Simple, None, "name=a", "insert")
        with self.assertRaises(InvalidParamsError):
            cast(Simple, None, {1: "a"}, "insert")
        with self.assertRaises(InvalidParamsError):
            cast(Simple, None, AltPrimaryKey(name="a"), "insert")

    def test_explicit_none_overrides_base(self) -> None:
        entity = Simple.new({"name": "a"})
        changeset = change(entity, {"name": None})
        self.assertEqual(dict(changeset.changes), {"name": None})
        self.assertIsNone(commit(changeset).name)

    def test_absent_key_keeps_base(self) -> None:
        entity = Simple.new({"name": "a"})
        changeset = change(entity, {})
        self.assertEqual(dict(changeset.changes), {})
        self.assertEqual(commit(changeset), entity)

    def test_equal_value_is_not_a_change(self) -> None:
        entity = Simple.new({"name": "a"})
        self.assertEqual(dict(change(entity, {"name": "a"}).changes), {})

    def test_explicit_name_beats_source_alias(self) -> None:
        changeset = cast(Account, None, {"display_name": "A", "displayName": "B"}, "insert")
        self.assertEqual(changeset.changes["display_name"], "A")
        changeset = cast(Account, None, {"displayName": "B"}, "insert")
        self.assertEqual(changeset.changes["display_name"], "B")

    def test_cast_failure_is_recorded_not_stored(self) -> None:
        changeset = cast(AltPrimaryKey, None, {"id": "abc", "name": "x"}, "insert")
        self.assertNotIn("id", changeset.changes)
        self.assertFalse(changeset.valid)
        (error,) = changeset.errors
        self.assertEqual((error.field, error.message, error.validation), ("id", "is invalid", "cast"))

    def test_insert_autogenerates_and_update_refreshes_timestamps(self) -> None:
        account = Account.new({"username": "bob"})
        self.assertIsInstance(account, Account)
        self.assertIsInstance(account.inserted_at, datetime)
        self.assertIsNone(account.inserted_at.tzinfo)
        self.assertEqual(account.inserted_at.microsecond, 0)

        changeset = change(account, {"nickname": "b"})
        self.assertTrue(changeset.valid)
        self.assertEqual(dict(changeset.changes), {"nickname": "b"})
        updated = commit(changeset)
        self.assertEqual(updated.inserted_at, account.inserted_at)
        self.assertGreaterEqual(updated.updated_at, account.updated_at)

        self.assertEqual(dict(change(account, {"username": "bob"}).changes), {})

    def test_autogeneration_only_on_insert(self) -> None:
        changeset = cast(Simple, None, {"name": "a"}, "insert")
        uuid = changeset.get_field("uuid")
        self.assertEqual(len(uuid), 36)
        self.assertEqual(changeset.fetch_field("uuid"), ("data", uuid))
        self.assertEqual(commit(changeset).uuid, uuid)
        self.assertEqual(dict(cast(Simple, None, {}, "update").generated), {})

    def test_changes_hold_only_castable_and_embed_fields(self) -> None:
        stamped = defstruct(
            "Stamped",
            [field("name"), embeds_many("tags", "Tag", fields=[field("label")]), timestamps()],
        )
        allowed = set(stamped.__schema__.cast_fields) | set(stamped.__schema__.embed_fields)
        inserted = cast(stamped, None, {"name": "a", "tags": [{"label": "x"}]}, "insert")
        self.assertEqual(set(inserted.changes), {"name", "tags"})
        self.assertLessEqual(set(inserted.changes), allowed)
        entity = commit(validate(inserted))
        updated = change(entity, {"name": "b", "tags": [{"label": "y"}]})
        self.assertLessEqual(set(updated.changes), allowed)
        self.assertEqual(set(updated.changes), {"name", "tags"})
        self.assertIsNotNone(commit(updated).updated_at)

    def test_put_change_rejects_generated_fields(self) -> None:
        changeset = cast(Account, None, {"username": "bob"}, "insert")
        for name in ("uuid", "inserted_at", "updated_at"):
            with self.subTest(field=name):
                with self.assertRaises(UnknownFieldError):
                    changeset.put_change(name, None)

    def test_commit_invalid_returns_changeset(self) -> None:
        changeset = validate(cast(AltPrimaryKey, None, {"id": "abc"}, "insert"))
        self.assertIs(commit(changeset), changeset)
        self.assertEqual(changeset.state, "invalid")

    def test_state(self) -> None:
        changeset = cast(Simple, None, {"name": "a"}, "insert")
        self.assertEqual(changeset.state, "building")
        self.assertEqual(validate(changeset).state, "valid")


class TestChangesetHelpers(unittest.TestCase):
    def test_fetch_and_get_field(self) -> None:
        entity = Simple.new({"name": "a"})
        changeset = change(entity, {"name": "b"})
        self.assertEqual(changeset.fetch_field("name"), ("changes", "b"))
        self.assertEqual(changeset.fetch_field("uuid"), ("data", entity.uuid))
        self.assertEqual(changeset.get_field("name"), "b")
        self.assertEqual(changeset.get_change("uuid", "none"), "none")
        self.assertIsNone(cast(Upload, None, {}, "insert").fetch_field("filename"))
        with self.assertRaises(UnknownFieldError):
            changeset.fetch_field("missing")

    def test_put_and_delete_change(self) -> None:
        entity = Simple.new({"name": "a"})
        changeset = change(entity, {})
        changeset = changeset.put_change("name", "z")
        self.assertEqual(changeset.changes["name"], "z")
        self.assertEqual(dict(changeset.put_change("name", "a").changes), {})
        self.assertEqual(dict(changeset.delete_change("name").changes), {})
        with self.assertRaises(UnknownFieldError):
            changeset.put_change("missing", 1)

    def test_put_change_with_bad_type_records_error(self) -> None:
        changeset = cast(AltPrimaryKey, None, {}, "insert").put_change("id", "abc")
        self.assertNotIn("id", changeset.changes)
        self.assertEqual(_messages(changeset, "id"), ["is invalid"])

    def test_add_error_is_not_duplicated(self) -> None:
        changeset = cast(Simple, None, {}, "insert")
        changeset = changeset.add_error("name", "bad", validation="custom", hint=1)
        changeset = changeset.add_error("name", "bad", validation="custom", hint=1)
        self.assertEqual(changeset.errors, (FieldError("name", "bad", "custom", {"hint": 1}),))

    def test_validate_change_only_sees_changes(self) -> None:
        changeset = cast(Simple, None, {"name": "abc"}, "insert")
        checked = changeset.validate_change("name", lambda name, value: ["too long"] if len(value) > 2 else [])
        self.assertEqual(_messages(checked, "name"), ["too long"])
        untouched = change(Simple.new({"name": "abc"}), {})
        self.assertTrue(untouched.validate_change("name", lambda name, value: ["never"]).valid)

    def test_revalidation_is_idempotent(self) -> None:
        changeset = change(Simple.new({"name": "a"}), {"name": "b"})
        self.assertEqual(validate(changeset), changeset)

        invalid = Validations.changeset(None, {"name": "x", "email": "nope"})
        self.assertEqual(validate(invalid).errors, invalid.errors)

    def test_change_onto_changeset_keeps_errors(self) -> None:
        changeset = Validations.changeset(None, {"name": "x", "email": "nope"})
        self.assertIn("has invalid format", _messages(changeset, "email"))
        changeset = change(changeset, {"email": "a@b", "age": 3})
        self.assertEqual(changeset.changes["email"], "a@b")
        self.assertEqual(changeset.changes["age"], 3)
        self.assertIn("has invalid format", _messages(changeset, "email"))

    def test_change_rejects_other_targets(self) -> None:
        with self.assertRaises(InvalidParamsError):
            change({"name": "a"}, {})

    def test_error_messages(self) -> None:
        changeset = Validations.changeset(None, {"email": "nope"})
        self.assertEqual(
            changeset.error_messages(),
            {"name": ["can't be blank"], "email": ["has invalid format"]},
        )


class TestEmbeds(unittest.TestCase):
    def test_embed_many_errors_are_hoisted(self) -> None:
        result = Embedded.new({"items": [{"name": "a"}, {"name": ""}]})
        self.assertIsInstance(result, Changeset)
        self.assertFalse(result.valid)
        self.assertEqual(result.error_messages(), {"items.1.name": ["must provide item name"]})
        self.assertEqual(len(result.errors_for("items")), 1)

    def test_embed_many_matches_by_index(self) -> None:
        entity = Embedded.new({"items": [{"name": "a"}, {"name": "b"}]})
        updated = commit(change(entity, {"items": [{"name": "a"}, {"name": "c"}, {"name": "d"}]}))
        self.assertEqual([item.name for item in updated.items], ["a", "c", "d"])
        self.assertEqual(updated.items[0].uuid, entity.items[0].uuid)
        self.assertEqual(updated.items[1].uuid, entity.items[1].uuid)
        self.assertEqual(len(updated.items[2].uuid), 36)
        self.assertEqual(dict(change(entity, {"items": [{"name": "a"}, {"name": "b"}]}).changes), {})

    def test_on_replace_policies(self) -> None:
        def declarations(policy: str) -> list:
            return [embeds_many("items", "Item", fields=[field("name")], on_replace=policy)]

        deleting = defstruct("Deleting", declarations("delete"))
        keeping = defstruct("Keeping", declarations("keep"))
        failing = defstruct("Failing", declarations("error"))

        entity = deleting.new({"items": [{"name": "a"}, {"name": "b"}]})
        self.assertEqual([item.name for item in commit(change(entity, {"items": [{"name": "x"}]})).items], ["x"])

        entity = keeping.new({"items": [{"name": "a"}, {"name": "b"}]})
        kept = commit(change(entity, {"items": [{"name": "x"}]}))
        self.assertEqual([item.name for item in kept.items], ["x", "b"])
        self.assertEqual(kept.items[1], entity.items[1])

        entity = failing.new({"items": [{"name": "a"}, {"name": "b"}]})
        changeset = change(entity, {"items": [{"name": "x"}]})
        self.assertFalse(changeset.valid)
        self.assertEqual(changeset.errors_for("items")[0].validation, "on_replace")
        self.assertNotIn("items", changeset.changes)

    def test_on_replace_schema_default(self) -> None:
        keeping = defstruct("KeepingByDefault", [embeds_many("items", "Item", fields=[field("name")])], on_replace="keep")
        entity = keeping.new({"items": [{"name": "a"}, {"name": "b"}]})
        self.assertEqual(len(commit(change(entity, {"items": []})).items), 2)

    def test_embed_many_invalid_shape(self) -> None:
        changeset = Embedded.changeset(None, {"items": "nope"})
        self.assertEqual(_messages(changeset, "items"), ["is invalid"])
        changeset = Embedded.changeset(None, {"items": [None]})
        self.assertEqual(_messages(changeset, "items"), ["is invalid"])

    def test_required_embed(self) -> None:
        result = ValidateRequiredEmbed.new({})
        self.assertIsInstance(result, Changeset)
        self.assertEqual(_messages(result, "embedded"), ["embed must be set"])

        entity = ValidateRequiredEmbed.new({"embedded": {"name": "x"}})
        self.assertIsInstance(entity.embedded, ValidateRequiredEmbed.Embed)
        self.assertEqual(entity.embedded.name, "x")

        result = ValidateRequiredEmbed.new({"embedded": {"name": ""}})
        self.assertEqual(result.error_messages(), {"embedded.name": ["can't be blank"]})

    def test_embed_one_entity_diffs_against_prior(self) -> None:
        entity = ValidateRequiredEmbed.new({"embedded": {"name": "x"}})
        self.assertNotIn("embedded", change(entity, {"embedded": entity.embedded}).changes)

        replacement = ValidateRequiredEmbed.Embed(uuid=entity.embedded.uuid, name="y")
        changeset = change(entity, {"embedded": replacement})
        child = changeset.changes["embedded"]
        self.assertEqual(dict(child.changes), {"name": "y"})
        self.assertEqual(changeset.get_field("embedded").name, "y")
        self.assertEqual(commit(changeset).embedded.uuid, entity.embedded.uuid)

    def test_embed_one_map_merges_into_prior(self) -> None:
        entity = ValidateRequiredEmbed.new({"embedded": {"name": "x"}})
        changeset = change(entity, {"embedded": {"name": "z"}})
        self.assertEqual(commit(changeset).embedded.uuid, entity.embedded.uuid)
        self.assertEqual(commit(changeset).embedded.name, "z")

    def test_embed_one_set_to_none(self) -> None:
        entity = ValidateRequiredEmbed.new({"embedded": {"name": "x"}})
        changeset = change(entity, {"embedded": None})
        self.assertIsNone(changeset.changes["embedded"])
        self.assertEqual(_messages(changeset, "embedded"), ["embed must be set"])


class TestValidatorFixture(unittest.TestCase):
    def test_content_type_is_derived(self) -> None:
        upload = Upload.new({"filename": "data.csv"})
        self.assertEqual(upload.content_type, "text/csv")

    def test_content_type_checks(self) -> None:
        result = Upload.new({"filename": "a.csv", "content_type": "application/pdf"})
        self.assertEqual(_messages(result, "content_type"), ["mismatched content type and file extension"])
        result = Upload.new({"filename": "a.exe", "content_type": "application/exe"})
        self.assertEqual(_messages(result, "content_type"), ["content type is not allowed"])
        result = Upload.new({})
        self.assertEqual(_messages(result, "filename"), ["expected filename"])

    def test_filename_change_must_match_existing_content_type(self) -> None:
        upload = Upload.new({"filename": "a.csv"})
        changeset = change(upload, {"filename": "b.pdf"})
        self.assertEqual(_messages(changeset, "filename"), ["filename must match content type of file"])
        self.assertTrue(change(upload, {"filename": "b.csv"}).valid)

    def test_guarded_validator_runs_on_update_only(self) -> None:
        account = Account.new({"username": "bob"})
        self.assertIsInstance(account, Account)
        changeset = change(account, {"username": "robert"})
        self.assertEqual(_messages(changeset, "nickname"), ["can't be blank"])


class TestModuleSurface(unittest.TestCase):
    def test_new_with_schema_descriptor(self) -> None:
        entity = new(Simple.__schema__, {"name": "a"})
        self.assertIsInstance(entity, Simple)


if __name__ == "__main__":
    unittest.main()
