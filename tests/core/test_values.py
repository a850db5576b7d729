"""
Tests for scalar wire values and pointers.
"""
import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from parsezero.core.pointer import Pointer, is_pointer_hash, object_ids, to_pointers
from parsezero.core.values import (
    ACL,
    Bytes,
    File,
    GeoPoint,
    encode_value,
    iso_date,
    parse_date,
)


class DateTests(unittest.TestCase):
    def test_parse_forms(self):
        expected = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        self.assertEqual(parse_date("2024-01-02T03:04:05.000Z"), expected)
        self.assertEqual(parse_date({"__type": "Date", "iso": "2024-01-02T03:04:05Z"}), expected)
        self.assertEqual(parse_date(datetime(2024, 1, 2, 3, 4, 5)), expected)
        self.assertEqual(parse_date(date(2024, 1, 2)), datetime(2024, 1, 2, tzinfo=timezone.utc))

    def test_empty_values(self):
        self.assertIsNone(parse_date(None))
        self.assertIsNone(parse_date(""))
        self.assertIsNone(parse_date({"__type": "Date"}))

    def test_garbage(self):
        with self.assertRaises(ValueError):
            parse_date(12.5)
        with self.assertRaises(ValueError):
            parse_date("yesterday")

    def test_iso_date_is_utc_with_milliseconds(self):
        value = datetime(2024, 1, 2, 5, 4, 5, 123456, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(iso_date(value), "2024-01-02T03:04:05.123Z")


class GeoPointTests(unittest.TestCase):
    def test_forms(self):
        expected = GeoPoint(1.5, 2.5)
        self.assertEqual(GeoPoint([1.5, 2.5]), expected)
        self.assertEqual(GeoPoint({"latitude": 1.5, "longitude": 2.5}), expected)
        self.assertEqual(GeoPoint(expected), expected)
        self.assertEqual(GeoPoint.typecast({"__type": "GeoPoint", "latitude": 1.5, "longitude": 2.5}), expected)

    def test_as_json(self):
        self.assertEqual(
            GeoPoint(1, 2).as_json(),
            {"__type": "GeoPoint", "latitude": 1.0, "longitude": 2.0},
        )
        self.assertEqual(GeoPoint(1, 2).to_list(), [1.0, 2.0])


class FileAndBytesTests(unittest.TestCase):
    def test_file_from_hash(self):
        file = File.typecast({"__type": "File", "name": "a.png", "url": "https://cdn/a.png"})
        self.assertEqual(file.as_json(), {"__type": "File", "name": "a.png", "url": "https://cdn/a.png"})

    def test_file_from_url(self):
        file = File("https://cdn/files/cover.jpg")
        self.assertEqual(file.name, "cover.jpg")
        self.assertEqual(file.url, "https://cdn/files/cover.jpg")

    def test_bytes(self):
        value = Bytes(b"hello")
        self.assertEqual(value.as_json(), {"__type": "Bytes", "base64": "aGVsbG8="})
        self.assertEqual(Bytes.typecast(value.as_json()).decoded(), b"hello")


class ACLTests(unittest.TestCase):
    def test_everyone(self):
        self.assertEqual(ACL.everyone(True, False).as_json(), {"*": {"read": True}})

    def test_apply_and_delete(self):
        acl = ACL()
        acl.apply(Pointer("_User", "u1"), True, True)
        acl.apply_role("admin", True)
        acl.apply("public", read=True)
        self.assertEqual(
            acl.as_json(),
            {
                "u1": {"read": True, "write": True},
                "role:admin": {"read": True},
                "*": {"read": True},
            },
        )
        acl.delete("u1")
        self.assertNotIn("u1", acl.as_json())

    def test_empty_permissions_are_dropped(self):
        acl = ACL({"u1": {"read": False}})
        self.assertEqual(acl.as_json(), {})

    def test_invalid_key(self):
        with self.assertRaises(ValueError):
            ACL().apply("", True)

    def test_owner_is_notified(self):
        class Owner:
            def __init__(self):
                self.changes = []

            def will_change(self, name):
                self.changes.append(name)

        owner = Owner()
        acl = ACL({"*": {"read": True}}, owner=owner)
        self.assertEqual(owner.changes, [])
        acl.apply("*", True)
        self.assertEqual(owner.changes, [])
        acl.apply("*", True, True)
        self.assertEqual(owner.changes, ["acl"])


class EncodeValueTests(unittest.TestCase):
    def test_nested_values(self):
        value = {
            "when": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "who": [Pointer("_User", "u1")],
            "price": Decimal("1.5"),
            "where": GeoPoint(1, 2),
        }
        self.assertEqual(
            encode_value(value),
            {
                "when": {"__type": "Date", "iso": "2024-01-01T00:00:00.000Z"},
                "who": [{"__type": "Pointer", "className": "_User", "objectId": "u1"}],
                "price": 1.5,
                "where": {"__type": "GeoPoint", "latitude": 1.0, "longitude": 2.0},
            },
        )

    def test_plain_values(self):
        self.assertEqual(encode_value("x"), "x")
        self.assertEqual(encode_value(3), 3)
        self.assertIsNone(encode_value(None))


class PointerTests(unittest.TestCase):
    def test_equality(self):
        self.assertEqual(Pointer("Song", "s1"), Pointer("Song", "s1"))
        self.assertNotEqual(Pointer("Song", "s1"), Pointer("Album", "s1"))
        self.assertEqual(Pointer("Song", "s1"), {"className": "Song", "objectId": "s1"})
        self.assertEqual(len({Pointer("Song", "s1"), Pointer("Song", "s1")}), 1)

    def test_state(self):
        pointer = Pointer("Song", "s1")
        self.assertTrue(pointer.is_present)
        self.assertTrue(pointer.is_pointer)
        self.assertFalse(pointer.is_fetched)
        self.assertEqual(pointer.sig, "Song#s1")
        self.assertFalse(Pointer("Song", None).is_present)

    def test_helpers(self):
        items = [Pointer("Song", "s1"), {"className": "Song", "objectId": "s2"}, "junk", Pointer("Song", None)]
        self.assertEqual(to_pointers(items), [Pointer("Song", "s1"), Pointer("Song", "s2")])
        self.assertEqual(object_ids(items), ["s1"])
        self.assertTrue(is_pointer_hash({"className": "Song", "objectId": "s2"}))
        self.assertFalse(is_pointer_hash({"className": "Song"}))
