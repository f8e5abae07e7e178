# /flowgate/services/transformer.py

import logging
from typing import Any, Dict, List, Optional

from flowgate.models.flow import DataItem, TransformConfig

logger = logging.getLogger(__name__)

_MISSING = object()


def get_nested_value(obj: Any, path: Optional[str], default: Any = None) -> Any:
    """
    Resolves a dot-notation path ("data.items.0.name") against nested dicts
    and lists. Returns `default` when any segment is missing.
    """
    if not path:
        return default

    current = obj
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key, _MISSING)
        elif isinstance(current, list) and key.lstrip("-").isdigit():
            index = int(key)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


def _first_present(record: Dict[str, Any], *paths: Optional[str]) -> Any:
    for path in paths:
        value = get_nested_value(record, path)
        if value is not None:
            return value
    return None


class DataItemTransformer:
    """Maps arbitrary external records to the normalized DataItem shape."""

    @staticmethod
    def transform(record: Dict[str, Any], mapping: TransformConfig) -> DataItem:
        if not isinstance(record, dict):
            # Scalar lists (["Red", "Blue"]) become id == title.
            return DataItem(id=str(record), title=str(record))

        item_id = _first_present(record, mapping.id_field, "id")
        title = _first_present(record, mapping.title_field, "name", "title")

        description = None
        if mapping.description_field:
            value = get_nested_value(record, mapping.description_field)
            if value is not None:
                description = str(value)

        return DataItem(
            id=str(item_id) if item_id is not None else "",
            title=str(title) if title is not None else "",
            description=description,
        )

    @classmethod
    def transform_many(cls, records: List[Any], mapping: TransformConfig) -> List[DataItem]:
        return [cls.transform(record, mapping) for record in records]


def extract_array(response: Any, data_key: Optional[str]) -> List[Any]:
    """
    Pulls the record array out of a response via a dot-path. When the path
    misses, the whole response is used if it is itself an array.
    """
    data = get_nested_value(response, data_key, default=_MISSING) if data_key else response

    if data is _MISSING:
        logger.warning(f"Data key path '{data_key}' not found in response, using root")
        data = response

    if isinstance(data, list):
        return data
    if isinstance(response, list):
        return response

    logger.warning("Response data is not an array, returning empty result")
    return []
