"""
Core Module

Shared application components including:
- Configuration management
- Dependency injection for FastAPI
- Logging configuration
- Exceptions and their HTTP handlers
"""
