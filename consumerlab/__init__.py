"""
ConsumerLab - synthetic consumer panels and concept preference analysis.
"""

__version__ = "0.1.0"
