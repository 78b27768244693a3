# pii_detection/context/__init__.py

"""Context-based confidence scoring and false-positive suppression."""
