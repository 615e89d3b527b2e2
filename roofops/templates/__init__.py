"""
roofops.templates — Message templates and ``{{ token }}`` rendering.
"""
