from __future__ import annotations

# Sync Record entity types
ENTITY_SPEC = "spec"

SPECS_DIRNAME = "specs"
SPEC_ID_MIN_PREFIX = 8
SPEC_NAME_MAX_LENGTH = 200
