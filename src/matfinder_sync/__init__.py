"""Bidirectional sync between Firestore and a local relational cache."""

__version__ = "0.1.0"
