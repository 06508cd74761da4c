"""
Estimate audit engine.

Compares an original repair estimate against its supplemented revision,
classifies every charge and scores the cost changes for review.
"""

__version__ = "1.0.0"
