"""specflow: phase-tracked spec documents mirrored to an issue tracker."""

__version__ = "0.1.0"
