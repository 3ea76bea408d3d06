"""
Tool argument normalization.

Models occasionally emit tool arguments that are not valid JSON. Rather than
failing the whole response, arguments are repaired with json-repair, and
anything that still isn't a JSON object becomes `{}`.
"""

import json
import logging
from typing import Any, Dict

import json_repair

logger = logging.getLogger(__name__)

EMPTY_ARGUMENTS = "{}"


def repair_arguments(arguments: str) -> str:
    """
    Return `arguments` as a valid JSON document.

    Valid JSON is returned unchanged; invalid JSON is repaired and re-encoded
    compactly; empty or unrepairable input becomes "{}".
    """
    if not arguments or not arguments.strip():
        return EMPTY_ARGUMENTS

    try:
        json.loads(arguments)
        return arguments
    except ValueError:
        pass

    repaired = json_repair.loads(arguments)
    if not isinstance(repaired, (dict, list)):
        logger.warning("Replacing unrepairable tool arguments with {}: %s", arguments)
        return EMPTY_ARGUMENTS

    logger.warning("Repaired invalid tool arguments: %s", arguments)
    return json.dumps(repaired, separators=(",", ":"), ensure_ascii=False)


def parse_arguments(arguments: str) -> Dict[str, Any]:
    """Decode tool arguments into an object, repairing them first."""
    value = json.loads(repair_arguments(arguments))
    if not isinstance(value, dict):
        return {}
    return value


def dump_arguments(value: Any) -> str:
    """Encode a tool input object as an arguments string."""
    if value is None:
        return EMPTY_ARGUMENTS
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
