"""Prompt builders for the reprocess service."""
