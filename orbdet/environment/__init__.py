"""
Environment Package
Contains the explicit simulation context: bodies, ground stations, ephemerides,
rotation models and the SPICE kernel manager.
"""
