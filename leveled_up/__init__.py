"""
LevelED Up - earn play time by passing a multiplication quiz.
"""

__version__ = "0.1.0"
