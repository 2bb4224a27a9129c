"""Recommendation module for SimRec.

This module contains the class weighting, weighted sampling, MinHash
sketching, LSH neighbour search and mixing logic, together with the store
and classifier adapters they run against.
"""
