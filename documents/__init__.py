"""Uploaded documents and their AI processing."""
