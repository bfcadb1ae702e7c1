"""
Clinic slot availability and booking coordination client.
"""

__version__ = "0.1.0"
