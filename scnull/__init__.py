"""
Synthetic null single-cell datasets for calibrating cluster-then-test
pipelines.
"""
from ._version import __version__
from .null import NullConstructor, construct_null

__all__ = ['NullConstructor', 'construct_null', '__version__']
