"""Linkage, classification, enrichment and filtering stages."""
