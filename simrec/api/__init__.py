"""FastAPI application module for SimRec.

This module contains the FastAPI application, route handlers, error types and
logging setup for the similar-products service.
"""
