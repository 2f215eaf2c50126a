"""
Codegate - comprehension-gated code unlock engine.
"""

__version__ = "0.3.0"
