import json
import logging
import os

logger = logging.getLogger(__name__)


class JourneyWriter:
    """Writes one JSON record per line."""

    def __init__(self, path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.path = path
        self.f = open(path, 'w', encoding='utf-8')
        self.count = 0

    def write(self, rec: dict):
        self.f.write(json.dumps(rec) + '\n')
        self.count += 1

    def close(self):
        self.f.close()
        logger.info("Wrote %d records to %s", self.count, self.path)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
