# pii_detection/core/__init__.py

"""Core domain models and utilities used across the detection system.

This package provides domain types, exceptions, and the packaged data
loader shared by the rest of the application.
"""
