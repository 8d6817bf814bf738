"""Module loading and resolution."""

from llar.modules.load import Resolution, load, resolve

__all__ = ["Resolution", "load", "resolve"]
