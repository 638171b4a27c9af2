"""Aircraft reference data for holoarchive.

Submodules
----------
reader
    Layout detection and 1 Hz in-flight record loading.
"""

from holoarchive.aircraft.reader import (
    AircraftData,
    AircraftDataError,
    read_aircraft,
    detect_layout,
)

__all__ = ['AircraftData', 'AircraftDataError', 'read_aircraft', 'detect_layout']
