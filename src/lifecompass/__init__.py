# src/lifecompass/__init__.py
"""
LifeCompass reflection engine.
"""

__version__ = "0.1.0"
__author__ = "LifeCompass Team"
