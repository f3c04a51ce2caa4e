"""
Core event cache and playback engine.
"""
