"""Utility functions and classes for sqlrecord."""

from sqlrecord.utils import logging, text, type_guards

__all__ = ("logging", "text", "type_guards")
