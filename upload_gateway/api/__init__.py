"""
API routers for the upload gateway.
"""
