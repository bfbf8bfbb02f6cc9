"""State/store layer.

This package is the single source of truth for how positions arriving
from the initial fetch, periodic polls and the change feed are merged
into one freshest-known position per subject.
"""
