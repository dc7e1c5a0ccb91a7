"""
Configuration package: settings and service wiring
"""
