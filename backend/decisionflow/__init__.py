"""Decision Flow Studio: guided decision flows evaluated against issue records."""

__version__ = "0.1.0"
