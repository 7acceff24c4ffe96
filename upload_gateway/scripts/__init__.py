"""
Operational scripts for bucket bootstrap and storage maintenance.
"""
