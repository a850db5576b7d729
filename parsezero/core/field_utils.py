"""
Field name utilities for mapping local attribute names to remote column and
class names.
"""

import re

from parsezero.core.types import ID, OBJECT_ID

_FIRST_CAP = re.compile(r"(.)([A-Z][a-z]+)")
_ALL_CAP = re.compile(r"([a-z0-9])([A-Z])")


def camelize(name: str, lower: bool = True) -> str:
    """
    Convert a snake_case name to camelCase.

    Examples:
        "first_name" -> "firstName"
        "first_name" (lower=False) -> "FirstName"
        "alreadyCamel" -> "alreadyCamel"
    """
    name = str(name)
    parts = name.split("_")
    head, rest = parts[0], parts[1:]
    head = head[:1].lower() + head[1:] if lower else head[:1].upper() + head[1:]
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def underscore(name: str) -> str:
    """
    Convert a camelCase name to snake_case.

    Examples:
        "firstName" -> "first_name"
        "GCMSenderId" -> "gcm_sender_id"
    """
    name = _FIRST_CAP.sub(r"\1_\2", str(name))
    return _ALL_CAP.sub(r"\1_\2", name).lower()


def columnize(name: str) -> str:
    """
    Default field formatter: the remote column name for a local field name.

    The identifier maps to the reserved objectId column and a single leading
    underscore is dropped before lower-camel-casing.

    Examples:
        "id" -> "objectId"
        "created_at" -> "createdAt"
        "_private_field" -> "privateField"
    """
    name = str(name).strip()
    if name == ID:
        return OBJECT_ID
    if name.startswith("_"):
        name = name[1:]
    return camelize(name)


def singularize(name: str) -> str:
    """Naive English singular of a plural field name: "songs" -> "song"."""
    name = str(name)
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith(("ses", "xes", "zes", "ches", "shes")):
        return name[:-2]
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


def classify(name: str) -> str:
    """
    Guess a remote class name from a field name.

    Examples:
        "song" -> "Song"
        "my_song" -> "MySong"
    """
    return camelize(str(name), lower=False)
