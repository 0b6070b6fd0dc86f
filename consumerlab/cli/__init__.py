"""
ConsumerLab CLI
"""
