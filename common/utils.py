import datetime
import decimal
import json
import logging
import uuid

from django.utils.dateparse import parse_date

logger = logging.getLogger(__name__)


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def parse_json_object(value):
    """Read a nested form value that may arrive as an object or as a JSON string.

    Multipart bodies can only carry strings, so nested objects are sent
    JSON-encoded. Anything that does not decode to an object becomes ``{}``.
    """
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)):
        try:
            decoded = json.loads(value)
        except (TypeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def split_param(value):
    if not value:
        return []
    return [item.strip() for item in str(value).split(",") if item.strip()]


def parse_optional_date(value):
    if not value:
        return None
    try:
        return parse_date(str(value))
    except ValueError:
        return None


def delete_stored_file(storage, name):
    """Remove a replaced or orphaned upload; a storage failure is logged and ignored."""
    if not name:
        return
    try:
        if storage.exists(name):
            storage.delete(name)
    except OSError:
        logger.warning("stored_file_delete_failed name=%s", name, exc_info=True)
