"""Skill resolution and context-gating engine.

Indexes a corpus of declarative skill and command definitions, matches a
request to the best one, gates it on the inputs it needs, assembles the
instruction payload and validates the generated response.
"""

from loguru import logger

# Disable logging by default for library usage.
# Application entry points (e.g., skillgate.cli) should call logger.enable("skillgate")
# to enable logging.
logger.disable("skillgate")
