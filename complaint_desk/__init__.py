"""Complaint desk service."""
