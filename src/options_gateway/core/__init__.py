"""
Core gateway services.
"""
