"""
ConsumerLab API - FastAPI application for background panel jobs.

Provides REST endpoints to submit and poll profile generation and
preference analysis jobs, cancel them, and recompute filtered summaries.
"""

__version__ = "0.1.0"
