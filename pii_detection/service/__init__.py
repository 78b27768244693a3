# pii_detection/service/__init__.py

"""Service layer: settings, the detection pipeline and the async worker."""
