"""cihost - bootstrap and continuity for a containerized Jenkins host."""

__version__ = "0.1.0"
