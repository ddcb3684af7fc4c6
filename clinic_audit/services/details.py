"""Coercion of free-form `details` payloads into structured data."""
import json
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def coerce_details(value: Any) -> Dict[str, Any]:
    """
    Return `value` as a dict.

    Serialized JSON text is parsed. Anything that is not, or does not parse to,
    a JSON object becomes an empty dict and the failure is logged.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes, bytearray)):
        if not value.strip():
            return {}
        try:
            parsed = json.loads(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding unparseable details payload: %s", exc)
            return {}
        if isinstance(parsed, dict):
            return parsed
        logger.warning("Discarding details payload that is not an object: %s", type(parsed).__name__)
        return {}
    logger.warning("Discarding details payload of type %s", type(value).__name__)
    return {}
