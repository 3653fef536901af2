from __future__ import annotations

import importlib.metadata

NAME = importlib.metadata.metadata("skillgate")["Name"]
VERSION = importlib.metadata.version("skillgate")
