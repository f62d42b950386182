"""
Directory Import - Synchronize organization units and users from the Google
Workspace directory into a local relational store.

This package provides a one-shot import job that reads the remote directory
through its paginated REST API and upserts the records into a SQLAlchemy
backed database.
"""

__version__ = "1.0.0"
__author__ = "Directory Import Team"
