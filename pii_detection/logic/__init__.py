# pii_detection/logic/__init__.py

"""Validation, document classification and rule application.

These components work on entity lists and never touch the NLP engine.
"""
