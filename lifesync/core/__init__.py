"""
Core utilities: error taxonomy, clock and provider clients.
"""
