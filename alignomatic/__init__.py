"""Classify paired-end reads from their alignments against a series of references."""

__version__ = "0.2.0"