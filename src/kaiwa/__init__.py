"""
kaiwa: task-based conversation practice and assessment for Japanese learners.
"""

__version__ = "0.1.0"
