"""
Detection event sources.
Events are read from JSON Lines files, one event per line, in timestamp order.
"""

import json
import logging
from typing import Any, Dict, Iterator

logger = logging.getLogger(__name__)


def read_events(path: str) -> Iterator[Dict[str, Any]]:
    """Yield raw event dicts; blank lines are skipped, unparsable lines logged and skipped."""
    with open(path, 'r', encoding='utf-8') as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("%s:%d: skipping invalid JSON (%s)", path, lineno, e.msg)


def load_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)
