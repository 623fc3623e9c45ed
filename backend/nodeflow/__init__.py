"""
nodeflow: workflow execution engine for AI node graphs.
"""

__version__ = "0.1.0"
