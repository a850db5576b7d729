from enum import Enum


class DataKind(str, Enum):
    """Data kinds a record property can be declared with."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"
    POINTER = "pointer"
    RELATION = "relation"
    ACL = "acl"
    BYTES = "bytes"
    GEOPOINT = "geopoint"
    FILE = "file"


class HttpMethod(str, Enum):
    GET = "get"
    POST = "post"
    PUT = "put"
    DELETE = "delete"


# Wire keys
TYPE_FIELD = "__type"
OP_FIELD = "__op"
OBJECT_ID = "objectId"
ID = "id"
CLASS_NAME = "className"
CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"

# Wire __type values
TYPE_POINTER = "Pointer"
TYPE_OBJECT = "Object"
TYPE_RELATION = "Relation"
TYPE_DATE = "Date"
TYPE_FILE = "File"
TYPE_GEOPOINT = "GeoPoint"
TYPE_BYTES = "Bytes"
TYPE_ACL = "ACL"

# Atomic operations
OP_DELETE = "Delete"
OP_INCREMENT = "Increment"
OP_ADD = "Add"
OP_ADD_UNIQUE = "AddUnique"
OP_REMOVE = "Remove"
OP_ADD_RELATION = "AddRelation"
OP_REMOVE_RELATION = "RemoveRelation"

DELETE_OP = {OP_FIELD: OP_DELETE}

# System classes
CLASS_USER = "_User"
CLASS_INSTALLATION = "_Installation"
CLASS_SESSION = "_Session"
CLASS_ROLE = "_Role"
