"""Genome-distance pipeline stages: sketching, distances, matrix assembly and trees."""
