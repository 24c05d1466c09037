"""
Inbound guard
"""
