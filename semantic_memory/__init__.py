"""
Semantic memory package initialization.
"""

# Setup logging configuration on package import
from .utils.logging_config import setup_logging

__version__ = '0.5.0'

setup_logging()
