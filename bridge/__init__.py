"""Editor bridge: control-process side and shared protocol."""

__version__ = "0.1.0"
