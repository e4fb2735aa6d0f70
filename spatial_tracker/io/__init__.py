"""
I/O module for the spatial tracker.
Reads detection event streams and writes journey records.
"""

from .streams import read_events, load_json
from .sink import JourneyWriter


__all__ = [
    'read_events',
    'load_json',
    'JourneyWriter',
]
