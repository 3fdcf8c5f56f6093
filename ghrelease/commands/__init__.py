"""
Command modules for ghrelease CLI.
"""
