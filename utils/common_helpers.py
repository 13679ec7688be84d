import json
import re
from typing import Any, Dict, Optional

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def strip_code_fences(text: str) -> str:
    """Drop a leading ```json (or bare ```) fence and the trailing fence, if present."""
    t = (text or "").strip()
    if t.startswith("```"):
        t = _FENCE_RE.sub("", t).strip()
    return t


def parse_json_strict(maybe: Any) -> Dict[str, Any]:
    """
    Parse model output into a JSON object.

    Tolerates code fences and prose before the object; raises ValueError
    (json.JSONDecodeError included) when no object can be recovered.
    """
    if isinstance(maybe, list):
        maybe = "".join(str(p) for p in maybe if p is not None)
    if maybe is None:
        raise ValueError("Empty LLM response (None)")
    if not isinstance(maybe, str):
        maybe = str(maybe)
    s = strip_code_fences(maybe)
    if not s:
        raise ValueError("Empty LLM response (blank)")
    try:
        data = json.loads(s)
    except json.JSONDecodeError:
        m = re.search(r"\{[\s\S]*\}", s)
        if not m:
            raise
        data = json.loads(m.group(0))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def normalize_ticker(symbol: Optional[str]) -> str:
    return (symbol or "").strip().upper()
