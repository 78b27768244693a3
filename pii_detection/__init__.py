# pii_detection/__init__.py

"""Multi-pass PII detection for English, French and German documents."""

__version__ = "0.1.0"
