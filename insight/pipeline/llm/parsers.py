"""
LLM response parsers
"""
import json
import logging

logger = logging.getLogger(__name__)


def parse_json(response: str) -> dict:
    """
    Parse a JSON object from an LLM response

    Tolerates ```json fences. Raises ValueError when the content is empty
    or is not a JSON object.
    """
    content = (response or "").strip()

    # Remove ```json ... ```
    if content.startswith("```"):
        parts = content.split("```")
        if len(parts) >= 2:
            content = parts[1]
            if content.lower().startswith("json"):
                content = content[4:]

    content = content.strip()
    if not content:
        raise ValueError("Empty LLM response")

    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

    return data


def clean_sql(sql: str) -> str:
    """Strip code fences and trailing semicolons from generated SQL"""
    content = (sql or "").strip()
    logger.debug(f"[clean_sql] Original: {repr(content[:200])}")

    # Remove ```sql ... ```
    if content.startswith("```"):
        parts = content.split("```")
        if len(parts) >= 2:
            content = parts[1]
            if content.lower().startswith("sql"):
                content = content[3:]

    content = content.strip().rstrip(";").strip()

    return content


def as_str_list(value) -> list[str]:
    """Coerce an LLM-provided list field into a list of strings"""
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def as_confidence(value) -> float:
    """Coerce an LLM-provided confidence into [0, 1]"""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 1.0)
