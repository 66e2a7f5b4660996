"""AreAssist: citizen issue reporting and volunteer coordination backend."""

__version__ = "1.0.0"
