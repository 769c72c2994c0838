"""
Services Package

Contains the directory services used by the corridor engine.

Services:
- HospitalDirectory: In-memory hospital catalog with nearest-match queries
"""

from .hospital_directory import (
    HospitalDirectory,
    DEMO_HOSPITALS,
    get_hospital_directory,
    init_hospital_directory,
)

__all__ = [
    "HospitalDirectory",
    "DEMO_HOSPITALS",
    "get_hospital_directory",
    "init_hospital_directory",
]
