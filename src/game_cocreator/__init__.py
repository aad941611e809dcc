"""Guided, variant-driven co-creation of small games."""
