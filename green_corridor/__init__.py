"""
Green Corridor Service
Backend Application Package

Emergency-vehicle green corridor coordination: ambulance mission tracking,
hospital selection and traffic-signal overrides along the route.
"""

__version__ = "1.0.0"
