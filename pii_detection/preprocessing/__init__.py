# pii_detection/preprocessing/__init__.py

"""Text preprocessing: normalization with offset tracking and lemmatization."""
