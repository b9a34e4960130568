"""Errors raised by the exam package."""
from __future__ import annotations


class ExamConfigError(ValueError):
    """A stored exam configuration could not be parsed."""


__all__ = ["ExamConfigError"]
