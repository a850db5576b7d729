"""
End-to-end persistence tests against the in-memory transport.
"""
import unittest

from parsezero.client import Client, MemoryTransport
from parsezero.core.actions import RelationAction, validate_session_token
from parsezero.core.config import Registry, config
from parsezero.core.exceptions import IllegalStateError, RecordNotSavedError
from parsezero.core.model import Record
from parsezero.core.pointer import Pointer
from parsezero.core.properties import BelongsTo, HasMany, Property
from parsezero.core.types import DataKind
from parsezero.core.values import parse_date

registry = Registry()
STAMP = "2024-01-01T00:00:00.000Z"
LATER = "2024-02-01T00:00:00.000Z"


@registry.register
class Musician(Record):
    name = Property()


@registry.register
class Band(Record):
    name = Property()
    active = Property(DataKind.BOOLEAN)
    plays = Property(DataKind.INTEGER)
    tags = Property(DataKind.ARRAY)
    leader = BelongsTo("Musician")
    members = HasMany("Musician", through="relation")


registry.freeze()


def stored_band(**attributes):
    body = {"objectId": "b1", "createdAt": STAMP, "updatedAt": STAMP, "name": "x"}
    body.update(attributes)
    return Band(body)


def pointer_json(class_name, object_id):
    return {"__type": "Pointer", "className": class_name, "objectId": object_id}


class SessionStub:
    session_token = "r:abc"


class PersistenceTestCase(unittest.TestCase):
    def setUp(self):
        self.transport = MemoryTransport()
        config.configure(client=Client(self.transport))

    def tearDown(self):
        config.configure(client=None, raise_on_save_failure=False)


class ChangeRequestTests(PersistenceTestCase):
    def test_boolean_change_gives_one_update(self):
        band = stored_band(active=False)
        band.active = True
        requests = band.change_requests()
        self.assertEqual(len(requests), 1)
        self.assertEqual(requests[0].method.value, "put")
        self.assertEqual(requests[0].path, "classes/Band/b1")
        self.assertEqual(requests[0].body, {"active": True})
        self.assertEqual(requests[0].tag, id(band))

    def test_string_and_relation_additions(self):
        band = stored_band()
        band.name = "y"
        band.members.add(Musician("m1"), Musician("m2"))
        requests = band.change_requests()
        self.assertEqual(len(requests), 2)
        self.assertEqual(requests[0].body, {"name": "y"})
        self.assertEqual(
            requests[1].body,
            {
                "members": {
                    "__op": "AddRelation",
                    "objects": [pointer_json("Musician", "m1"), pointer_json("Musician", "m2")],
                }
            },
        )
        self.assertTrue(all(r.tag == id(band) for r in requests))

    def test_new_record_uses_create(self):
        band = Band(name="x")
        band.members.add(Musician("m1"))
        requests = band.change_requests()
        self.assertEqual(len(requests), 1)
        self.assertEqual(requests[0].method.value, "post")
        self.assertEqual(requests[0].path, "classes/Band")

    def test_force(self):
        band = stored_band()
        self.assertEqual(band.change_requests(), [])
        self.assertEqual(len(band.change_requests(force=True)), 1)

    def test_destroy_request(self):
        self.assertIsNone(Band(name="x").destroy_request())
        request = stored_band().destroy_request()
        self.assertEqual(request.method.value, "delete")
        self.assertEqual(request.path, "classes/Band/b1")

    def test_changes_payload(self):
        band = stored_band()
        band.plays = 3
        band.members.remove(Musician("m9"))
        self.assertEqual(
            band.changes_payload(),
            {
                "plays": 3,
                "members": {"__op": "RemoveRelation", "objects": [pointer_json("Musician", "m9")]},
            },
        )

    def test_pointer_and_array_payloads(self):
        band = stored_band()
        band.leader = Musician("m1")
        band.tags = ["punk"]
        self.assertEqual(
            band.attribute_updates(),
            {"leader": pointer_json("Musician", "m1"), "tags": ["punk"]},
        )

    def test_relation_action(self):
        action = RelationAction("members", False, [Musician("m1"), "junk"])
        self.assertEqual(action.operation, "RemoveRelation")
        self.assertEqual(
            action.as_json(),
            {"members": {"__op": "RemoveRelation", "objects": [pointer_json("Musician", "m1")]}},
        )


class CreateTests(PersistenceTestCase):
    def test_create(self):
        self.transport.reply({"objectId": "abc", "createdAt": STAMP, "updatedAt": STAMP})
        band = Band({"name": "x"})
        self.assertTrue(band.save())

        self.assertEqual(len(self.transport.requests), 1)
        request = self.transport.requests[0]
        self.assertEqual(request.method.value, "post")
        self.assertEqual(request.path, "classes/Band")
        self.assertEqual(request.body, {"name": "x"})

        self.assertEqual(band.id, "abc")
        self.assertEqual(band.created_at, parse_date(STAMP))
        self.assertEqual(band.updated_at, parse_date(STAMP))
        self.assertFalse(band.changed)
        self.assertFalse(band.is_new)
        self.assertFalse(band.existed)

    def test_create_adopts_server_fields(self):
        self.transport.reply({"objectId": "abc", "createdAt": STAMP, "name": "X (rewritten)"})
        band = Band(name="x")
        band.save()
        self.assertEqual(band.name, "X (rewritten)")
        self.assertEqual(band.updated_at, parse_date(STAMP))
        self.assertFalse(band.changed)

    def test_create_with_relations(self):
        self.transport.reply({"objectId": "abc", "createdAt": STAMP, "updatedAt": STAMP})
        band = Band(name="x")
        band.members.add(Musician("m1"))
        self.assertTrue(band.save())
        first, second = self.transport.requests
        self.assertEqual(first.body, {"name": "x"})
        self.assertEqual(second.method.value, "put")
        self.assertEqual(second.path, "classes/Band/abc")
        self.assertEqual(second.body["members"]["__op"], "AddRelation")
        self.assertFalse(band.changed)
        self.assertEqual(band.members.additions, [])

    def test_failed_create_returns_false(self):
        self.transport.fail("invalid field name", code=105)
        band = Band(name="x")
        with self.assertLogs("parsezero.core.actions", level="ERROR"):
            self.assertFalse(band.save())
        self.assertTrue(band.is_new)
        self.assertEqual(band.changed, ["name"])

    def test_failed_create_raises_when_asked(self):
        self.transport.fail("invalid field name", code=105)
        band = Band(name="x")
        with self.assertRaises(RecordNotSavedError) as ctx:
            band.save(autoraise=True)
        self.assertIs(ctx.exception.record, band)

    def test_failed_create_raises_when_configured(self):
        config.configure(raise_on_save_failure=True)
        self.transport.fail("invalid field name", code=105)
        with self.assertRaises(RecordNotSavedError):
            Band(name="x").save()

    def test_save_or_raise(self):
        self.transport.fail("boom")
        with self.assertRaises(RecordNotSavedError):
            Band(name="x").save_or_raise()

    def test_type_level_raise_setting(self):
        class StrictBand(Band):
            raise_on_save_failure = True

        self.transport.fail("boom")
        with self.assertRaises(RecordNotSavedError):
            StrictBand(name="x").save()


class UpdateTests(PersistenceTestCase):
    def test_unchanged_save_is_a_noop(self):
        self.assertTrue(stored_band().save())
        self.assertEqual(self.transport.requests, [])

    def test_update(self):
        self.transport.reply({"updatedAt": LATER})
        band = stored_band()
        band.name = "y"
        self.assertTrue(band.save())
        request = self.transport.last_request
        self.assertEqual(request.method.value, "put")
        self.assertEqual(request.path, "classes/Band/b1")
        self.assertEqual(request.body, {"name": "y"})
        self.assertEqual(band.updated_at, parse_date(LATER))
        self.assertTrue(band.existed)
        self.assertFalse(band.changed)

    def test_update_adopts_server_fields(self):
        self.transport.reply({"updatedAt": LATER, "plays": 99})
        band = stored_band()
        band.plays = 1
        band.save()
        self.assertEqual(band.plays, 99)
        self.assertFalse(band.changed)

    def test_null_is_sent_as_delete(self):
        band = stored_band(plays=3)
        band.plays = None
        band.save()
        self.assertEqual(self.transport.last_request.body, {"plays": {"__op": "Delete"}})

    def test_update_warns_about_invalid_values(self):
        class Album(Record):
            title = Property(required=True)

        album = Album({"objectId": "a1", "createdAt": STAMP, "updatedAt": STAMP, "title": "t"})
        album.title = None
        with self.assertLogs("parsezero.core.actions", level="WARNING"):
            self.assertTrue(album.save())

    def test_session_token_header(self):
        band = stored_band()
        band.name = "y"
        band.save(session="r:tok")
        self.assertEqual(
            self.transport.last_request.headers, {"X-Parse-Session-Token": "r:tok"}
        )

    def test_session_object(self):
        band = stored_band()
        band.name = "y"
        band.save(session=SessionStub())
        self.assertEqual(self.transport.last_request.headers["X-Parse-Session-Token"], "r:abc")

    def test_invalid_session(self):
        band = stored_band()
        band.name = "y"
        with self.assertRaises(ValueError):
            band.save(session="")
        with self.assertRaises(ValueError):
            band.save(session=42)
        self.assertEqual(self.transport.requests, [])

    def test_validate_session_token(self):
        self.assertIsNone(validate_session_token(None, "save"))
        self.assertEqual(validate_session_token("tok", "save"), "tok")


class RelationPersistenceTests(PersistenceTestCase):
    def test_update_relations_sends_both_halves(self):
        band = stored_band()
        band.members.add(Musician("p1"))
        band.members.remove(Musician("p2"))
        self.assertTrue(band.update_relations())

        bodies = [r.body for r in self.transport.requests]
        self.assertEqual(len(bodies), 2)
        self.assertIn(
            {"members": {"__op": "AddRelation", "objects": [pointer_json("Musician", "p1")]}},
            bodies,
        )
        self.assertIn(
            {"members": {"__op": "RemoveRelation", "objects": [pointer_json("Musician", "p2")]}},
            bodies,
        )
        self.assertTrue(all(r.path == "classes/Band/b1" for r in self.transport.requests))
        self.assertFalse(band.changed)
        self.assertEqual(band.members.additions, [])
        self.assertEqual(band.members.removals, [])

    def test_update_relations_requires_id(self):
        band = Band(name="x")
        band.members.add(Musician("p1"))
        with self.assertRaises(IllegalStateError):
            band.update_relations()

    def test_cancelled_relation_change_sends_nothing(self):
        band = stored_band()
        band.members.add(Musician("p1"))
        band.members.remove(Musician("p1"))
        self.assertEqual(band.members.additions, [])
        self.assertEqual(band.members.removals, [])
        self.assertTrue(band.members.save())
        self.assertTrue(band.save())
        self.assertEqual(self.transport.requests, [])

    def test_proxy_save_commits(self):
        band = stored_band()
        band.members.add(Musician("p1"))
        self.assertTrue(band.members.save())
        self.assertEqual(len(self.transport.requests), 1)
        self.assertEqual(band.members.additions, [])
        self.assertFalse(band.is_changed("members"))

    def test_relation_failure_keeps_relations_pending(self):
        self.transport.reply({"updatedAt": LATER})
        self.transport.fail("relation write failed")
        band = stored_band()
        band.name = "y"
        band.members.add(Musician("p1"))
        with self.assertLogs("parsezero.core.actions", level="ERROR"):
            self.assertFalse(band.save())
        self.assertEqual(band.changed, ["members"])
        self.assertEqual(band.members.additions, [Musician("p1")])
        self.assertEqual(band.updated_at, parse_date(LATER))

        self.transport.reset()
        self.assertTrue(band.save())
        self.assertEqual(len(self.transport.requests), 1)
        self.assertEqual(self.transport.requests[0].body["members"]["__op"], "AddRelation")

    def test_rollback_after_relation_failure_keeps_saved_arrays(self):
        self.transport.reply({"updatedAt": LATER})
        self.transport.fail("relation write failed")
        band = stored_band(tags=["a"])
        band.tags.add("b")
        band.members.add(Musician("p1"))
        with self.assertLogs("parsezero.core.actions", level="ERROR"):
            self.assertFalse(band.save())
        self.assertFalse(band.tags.changed)

        band.tags.add("c")
        band.rollback()
        self.assertEqual(list(band.tags), ["a", "b"])

    def test_relation_failure_raises_when_asked(self):
        self.transport.fail("relation write failed")
        band = stored_band()
        band.members.add(Musician("p1"))
        with self.assertRaises(RecordNotSavedError):
            band.save(autoraise=True)

    def test_attribute_failure_skips_relations(self):
        self.transport.fail("update failed")
        band = stored_band()
        band.name = "y"
        band.members.add(Musician("p1"))
        self.assertFalse(band.save())
        self.assertEqual(len(self.transport.requests), 1)
        self.assertEqual(sorted(band.changed), ["members", "name"])

    def test_lazy_load_queries_related_objects(self):
        self.transport.reply({"results": [{"objectId": "m1", "name": "Ann"}]})
        band = stored_band()
        members = band.members.to_list()
        self.assertEqual(members, [Musician("m1")])
        self.assertIsInstance(members[0], Musician)

        request = self.transport.last_request
        self.assertEqual(request.path, "classes/Musician")
        self.assertIn('"$relatedTo"', request.query["where"])

    def test_relation_query(self):
        band = stored_band()
        query = band.members.query({"name": "Ann"})
        self.assertEqual(query.class_name, "Musician")
        self.assertEqual(
            query.compile_where(),
            {
                "name": "Ann",
                "$relatedTo": {"object": pointer_json("Band", "b1"), "key": "members"},
            },
        )


class DestroyTests(PersistenceTestCase):
    def test_destroy_new_record(self):
        self.assertFalse(Band(name="x").destroy())
        self.assertEqual(self.transport.requests, [])

    def test_destroy(self):
        band = stored_band()
        self.assertTrue(band.destroy())
        request = self.transport.last_request
        self.assertEqual(request.method.value, "delete")
        self.assertEqual(request.path, "classes/Band/b1")
        self.assertIsNone(band.id)
        self.assertTrue(band.is_new)
        self.assertFalse(band.changed)

    def test_failed_destroy(self):
        self.transport.fail("nope")
        band = stored_band()
        with self.assertLogs("parsezero.core.actions", level="ERROR"):
            self.assertFalse(band.destroy())
        self.assertEqual(band.id, "b1")


class AtomicOperationTests(PersistenceTestCase):
    def test_increment(self):
        self.transport.reply({"plays": 12, "updatedAt": LATER})
        band = stored_band(plays=10)
        self.assertTrue(band.op_increment("plays", 2))
        self.assertEqual(
            self.transport.last_request.body, {"plays": {"__op": "Increment", "amount": 2}}
        )
        self.assertEqual(band.plays, 12)
        self.assertFalse(band.changed)

    def test_increment_requires_number(self):
        with self.assertRaises(ValueError):
            stored_band().op_increment("plays", "two")

    def test_operations_require_id(self):
        with self.assertRaises(IllegalStateError):
            Band(name="x").op_add("tags", ["a"])

    def test_array_operations(self):
        band = stored_band()
        band.op_add("tags", ["a"])
        band.op_add_unique("tags", ["b"])
        band.op_remove("tags", ["a"])
        band.op_destroy("tags")
        ops = [r.body["tags"] for r in self.transport.requests]
        self.assertEqual(
            ops,
            [
                {"__op": "Add", "objects": ["a"]},
                {"__op": "AddUnique", "objects": ["b"]},
                {"__op": "Remove", "objects": ["a"]},
                {"__op": "Delete"},
            ],
        )

    def test_proxy_atomic_add(self):
        self.transport.reply({"tags": ["a", "b"]})
        band = stored_band(tags=["a"])
        self.assertTrue(band.tags.atomic_add("b"))
        self.assertEqual(self.transport.last_request.body, {"tags": {"__op": "Add", "objects": ["b"]}})
        self.assertEqual(band.tags, ["a", "b"])
        self.assertFalse(band.changed)

    def test_relation_operations(self):
        band = stored_band()
        self.assertFalse(band.op_add_relation("members", []))
        self.assertTrue(band.op_add_relation("members", [Musician("m1")]))
        self.assertTrue(band.members.atomic_remove(Pointer("Musician", "m2")))
        first, second = self.transport.requests
        self.assertEqual(first.body["members"]["__op"], "AddRelation")
        self.assertEqual(
            second.body,
            {"members": {"__op": "RemoveRelation", "objects": [pointer_json("Musician", "m2")]}},
        )

    def test_failed_operation(self):
        self.transport.fail("nope")
        with self.assertLogs("parsezero.core.actions", level="ERROR"):
            self.assertFalse(stored_band().op_increment("plays"))


class HookTests(PersistenceTestCase):
    def test_before_save_can_abort(self):
        class GuardedBand(Band):
            pass

        GuardedBand.on("before_save", lambda record: False)
        self.assertFalse(GuardedBand(name="x").save())
        self.assertEqual(self.transport.requests, [])

    def test_hooks_run_in_order(self):
        events = []

        class HookedBand(Band):
            pass

        @HookedBand.on("before_save")
        def before(record):
            events.append(("before_save", record.is_new))

        HookedBand.on("after_save", lambda record: events.append(("after_save", record.is_new)))
        HookedBand.on("after_destroy", lambda record: events.append(("after_destroy", record.id)))

        self.transport.reply({"objectId": "h1", "createdAt": STAMP, "updatedAt": STAMP})
        band = HookedBand(name="x")
        band.save()
        band.destroy()
        self.assertEqual(
            events,
            [("before_save", True), ("after_save", False), ("after_destroy", None)],
        )

    def test_hooks_are_per_type(self):
        class LoudBand(Band):
            pass

        LoudBand.on("before_save", lambda record: False)
        self.assertEqual(Band._hooks.get("before_save", []), [])

    def test_unknown_event(self):
        with self.assertRaises(ValueError):
            Band.on("before_lunch", lambda record: None)


class FirstOrCreateTests(PersistenceTestCase):
    def test_existing_record(self):
        self.transport.reply({"results": [{"objectId": "b7", "name": "x", "createdAt": STAMP}]})
        band = Band.first_or_create({"name": "x"})
        self.assertEqual(band.id, "b7")

    def test_new_record(self):
        self.transport.reply({"results": []})
        band = Band.first_or_create({"name": "x", "plays__gt": 3}, {"active": True})
        self.assertTrue(band.is_new)
        self.assertEqual(band.name, "x")
        self.assertTrue(band.active)
        self.assertIsNone(band.plays)

    def test_first_or_create_or_raise(self):
        self.transport.reply({"results": []})
        self.transport.reply({"objectId": "b8", "createdAt": STAMP, "updatedAt": STAMP})
        band = Band.first_or_create_or_raise({"name": "x"})
        self.assertEqual(band.id, "b8")
        self.assertEqual(self.transport.requests[1].body, {"name": "x"})


class FindTests(PersistenceTestCase):
    def test_find(self):
        self.transport.reply({"objectId": "b1", "name": "x", "createdAt": STAMP, "updatedAt": STAMP})
        band = Band.find("b1")
        self.assertEqual(band.name, "x")
        self.assertEqual(self.transport.last_request.path, "classes/Band/b1")

    def test_find_missing(self):
        self.transport.fail("Object not found.", code=101, http_status=404)
        self.assertIsNone(Band.find("nope"))

    def test_reload(self):
        self.transport.reply({"objectId": "b1", "name": "fresh", "createdAt": STAMP, "updatedAt": LATER})
        band = stored_band()
        band.reload()
        self.assertEqual(band.name, "fresh")
        self.assertFalse(band.changed)
