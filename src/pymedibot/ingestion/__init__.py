"""Ingestion helpers.

Converts store rows and change-feed payloads into typed models and
position candidates for the state layer.
"""
