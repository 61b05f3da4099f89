"""
Data Generation Module
"""
from .generators import DataGenerator, DimensionGenerator, FactGenerator, Registration, facts_to_frame

__all__ = [
    "DataGenerator",
    "DimensionGenerator",
    "FactGenerator",
    "Registration",
    "facts_to_frame",
]
