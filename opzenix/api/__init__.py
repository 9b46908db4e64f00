"""
HTTP and WebSocket API for Opzenix.
"""
