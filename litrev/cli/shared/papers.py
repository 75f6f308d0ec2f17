"""Reading and writing paper lists."""

import json
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from litrev.models import Paper

_PAPERS_ADAPTER = TypeAdapter(list[Paper])


def load_papers(path: Path) -> list[Paper]:
    """Load papers from a JSON file.

    Accepts a bare list of papers or an object with a ``papers`` list (the
    output of ``litrev filter``).
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("papers", [])
    return _PAPERS_ADAPTER.validate_python(data)


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
