"""
Engines - domain logic with no HTTP or database coupling.
"""
