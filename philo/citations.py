import re
from typing import Any, Dict, List

# File-search markers look like 【4:0†source】; the mathematical brackets variant is accepted too.
CITATION_RE = re.compile(r"[【⟦]\d+:\d+†[^】⟧]*[】⟧]")


def strip_citations(text: str) -> str:
    if not text:
        return text
    # Removing an inner marker can splice its neighbours into a new one.
    while True:
        text, count = CITATION_RE.subn("", text)
        if not count:
            return text


def collect_file_ids(annotations: List[Dict[str, Any]]) -> List[str]:
    """Distinct cited file ids, in the order they first appear."""
    seen: List[str] = []
    for item in annotations or []:
        if not isinstance(item, dict) or item.get("type") != "file_citation":
            continue
        citation = item.get("file_citation") or {}
        file_id = citation.get("file_id")
        if file_id and file_id not in seen:
            seen.append(file_id)
    return seen
