"""
Services package.

Business logic for the upload gateway: folder policy, key naming, transfer
routing, multipart streaming, presigned tickets, rate limiting, cleanup and
metadata lookups.
"""
