"""
Differential Array Analysis Pipeline

A modular framework for differential analysis of gene-expression and
DNA methylation arrays, from raw intensities to annotated result tables.
"""

__version__ = "1.0.0"
__author__ = "Neuroarray Contributors"
