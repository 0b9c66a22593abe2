"""Interfacility-transfer ICU cohort construction."""
