"""Belief modelling core: predictive-processing contexts, discrepancies and dialectics."""
