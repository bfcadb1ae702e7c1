"""
HTTP and WebSocket servers for the clinic booking client.
"""
