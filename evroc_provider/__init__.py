"""Cluster API infrastructure provider for the evroc cloud."""

__version__ = "0.1.0"
