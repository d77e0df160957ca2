"""
API Layer for the Hybrid Phenotype Matcher

This package provides the FastAPI-based API layer that exposes:
- POST /analyze-hybrid for hybrid image analysis
- REST endpoints for stored reports and the reference corpus
- Health check and API info endpoints
"""
