"""
roofops.domain — Canonical data models and enumerations.

This package defines the source-of-truth types shared across every layer
of the operations platform. Nothing in here should import from other roofops
sub-packages (only stdlib / roofops.core).
"""
