"""
Turn model output into JSON objects and merge the per-segment results.
"""

import copy
import json
import logging
from typing import Any, Dict, Iterable, Optional

from json_repair import repair_json as repair_json_text

from pipeline_errors import UnrepairableOutputError


def _parse_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _json_span(text: str) -> Optional[str]:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    ends = [i for i in (text.rfind("}"), text.rfind("]")) if i != -1]
    if not starts or not ends:
        return None
    start, end = min(starts), max(ends)
    if end < start:
        return None
    return text[start : end + 1]


def repair_json(raw_text: str) -> Dict[str, Any]:
    """
    Parse model output as a JSON object, repairing it if needed.

    Tries, in order: plain parsing, repairing the whole text, and repairing
    only the span from the first bracket to the last one.

    Args:
        raw_text: Text returned by the model

    Returns:
        Dict[str, Any]: The parsed object

    Raises:
        UnrepairableOutputError: If no attempt yields a JSON object
    """
    result = _parse_object(raw_text)
    if result is not None:
        logging.debug("JSON repair not needed")
        return result

    logging.debug("Model output is not valid JSON, attempting repair")
    try:
        result = _parse_object(repair_json_text(raw_text))
    except Exception as e:
        logging.debug(f"JSON repair of full output failed: {e}")
        result = None
    if result is not None:
        logging.debug("JSON repair successful")
        return result

    span = _json_span(raw_text)
    if span is not None:
        try:
            result = _parse_object(repair_json_text(span))
        except Exception as e:
            logging.debug(f"JSON repair of bracketed span failed: {e}")
            result = None
        if result is not None:
            logging.debug("JSON repair of bracketed span successful")
            return result

    logging.error(f"All JSON repair attempts failed for output: {raw_text[:200]!r}")
    raise UnrepairableOutputError(
        "Received invalid JSON from the model. All JSON repair attempts failed.",
        raw_text,
    )


def merge_results(
    results: Iterable[Dict[str, Any]], title_key: str = "title"
) -> Dict[str, Any]:
    """
    Deep-merge partial results in order.

    Nested objects are merged recursively, lists are concatenated and strings
    are concatenated, except title_key where the last value wins. Any other
    value overwrites what came before.

    Args:
        results: Partial results in segment order
        title_key: Key whose string value is replaced instead of concatenated

    Returns:
        Dict[str, Any]: The merged result
    """
    merged: Dict[str, Any] = {}

    for result in results:
        for key, value in result.items():
            current = merged.get(key)
            if isinstance(value, dict):
                if isinstance(current, dict):
                    merged[key] = merge_results([current, value], title_key)
                else:
                    merged[key] = copy.deepcopy(value)
            elif isinstance(value, list):
                base = current if isinstance(current, list) else []
                merged[key] = base + copy.deepcopy(value)
            elif isinstance(value, str) and key != title_key:
                base = current if isinstance(current, str) else ""
                merged[key] = base + value
            else:
                merged[key] = value

    return merged
