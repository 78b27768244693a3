# pii_detection/engine/__init__.py

"""Engine package providing the regex and NER detectors and their fusion.

Regex recognizers are built on Presidio's PatternRecognizer; NER runs a
spaCy model behind a timeout.
"""
