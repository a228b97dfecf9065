"""
Thin presentation layer around the analysis core: drop payload handling,
run bookkeeping for superseded file opens, and the Qt window.
"""
