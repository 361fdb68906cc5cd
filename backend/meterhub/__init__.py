"""
MeterHub: storage and query service for energy meter readings.
"""
__version__ = "1.0.0"
