import datetime
import json

from dateutil import tz
from dateutil.parser import parse as parse_datetime

STORED_TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def safe_json_serialize_deserialize(data: any, **kwargs) -> dict:
    """
    Utility function that safely serializes unserializable fields in
    'data' as str and returns back the deserialized version

    Typically useful for serializing datetime.datetime, datetime.date or
    Decimal values coming back from the store
    """
    json_string = json.dumps(data, default=str, **kwargs)
    return json.loads(json_string)


def normalize_timestamp(value):
    """
    Converts an upstream or caller supplied timestamp into the stored
    representation: naive UTC text, 'YYYY-MM-DD HH:MM:SS'.

    Empty values are returned as None. Raises ValueError when the value
    cannot be parsed.
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, datetime.date):
        parsed = datetime.datetime(value.year, value.month, value.day)
    else:
        parsed = parse_datetime(str(value))

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz.UTC).replace(tzinfo=None)

    return parsed.strftime(STORED_TIMESTAMP_FORMAT)


def first_item(value) -> dict:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return {}


def join_values(items, key: str) -> str:
    if not isinstance(items, list):
        return ''
    values = [str(item.get(key)) for item in items if isinstance(item, dict) and item.get(key)]
    return ','.join(values)
