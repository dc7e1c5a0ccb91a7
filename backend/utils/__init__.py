"""
Shared utilities: logging, exceptions and the time source
"""
