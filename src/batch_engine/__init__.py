"""
Batch Engine - Experiment Batch Execution Engine

Tracks laboratory experiment batches through ordered protocol steps, maps
samples onto a 96-well plate, aggregates step progress, and calculates
volumetric pooling ratios for sequencing libraries.
"""

__version__ = "0.1.0"
__author__ = "Genome Innovation Hub"
