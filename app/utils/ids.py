"""Document ID helpers."""
from bson import ObjectId


def to_object_id(value: str, label: str = "ID") -> ObjectId:
    """
    Parse a string document ID.

    Raises:
        ValueError: If the value is not a valid ObjectId
    """
    try:
        return ObjectId(value)
    except Exception:
        raise ValueError(f"Invalid {label} format")


def flexible_id_filter(value: str) -> dict:
    """Match an ``_id`` stored either as a plain string or as an ObjectId."""
    if ObjectId.is_valid(value):
        return {"_id": {"$in": [value, ObjectId(value)]}}
    return {"_id": value}
