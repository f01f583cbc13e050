"""Admission engine: policy, ingestion, approvals and commands."""
