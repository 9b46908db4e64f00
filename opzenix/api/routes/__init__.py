"""
API route modules for Opzenix.
"""
