"""
Command-line tooling built on {obj}`Session`.
"""
