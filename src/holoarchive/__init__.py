"""`holoarchive` - HOLODEC hologram sequence decoding and particle archiving.

Subpackages:
- sequence: Container decoding, frame naming, screening, PNG export
- particles: Detection model, bulk moments, 1 Hz aggregation
- aircraft: Aircraft state files (NCAR and Convair layouts)
- archive: NetCDF particle archive writer and reader
- pipeline: Orchestrator, processor, file tracking
- schemas: Layered pydantic configuration
"""

__version__ = "0.1.0"
