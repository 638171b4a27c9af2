"""holoarchive user configuration.

Modify settings here for one research flight. Anything not listed keeps
its default from holoarchive.schemas.ParamConfig.

Usage:
    from holoarchive.cli import run_archive_from_table
    run_archive_from_table("scripts/user_config.py", "RF04_particles.csv")
"""

CONFIG = {
    # ========================================================================
    # FLIGHT & OUTPUT
    # ========================================================================
    "PREFIX": "RF04",          # Flight identifier, used in archive and frame names
    "BASE_DIR": "./holodec_output",  # frames/, archive/ and logs/ go here

    # ========================================================================
    # PARTICLE ACCEPTANCE
    # ========================================================================
    "RULESET": 8,              # Classifier ruleset id (required)
    "ROUND_RULESET": None,     # Set to enable the round-particle channel
    "TIME_OFFSET": 0.0,        # Seconds added to probe capture times

    # ========================================================================
    # AIRCRAFT REFERENCE
    # ========================================================================
    "NCFILE": None,            # NCAR or Convair 1 Hz aircraft file
    "REFVAR": None,            # Cloud reference variable (None = layout default)
    "THRESH": 0.001,           # In-cloud threshold on REFVAR

    # ========================================================================
    # FRAME EXPORT & WORKERS
    # ========================================================================
    "WRITE_FRAMES": False,     # Write selected holograms as PNG
    "N_WORKERS": 4,
}
