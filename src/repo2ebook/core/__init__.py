"""Build pipeline: walking, conversion, image localization and packaging."""
