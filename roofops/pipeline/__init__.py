"""
roofops.pipeline — Sales pipeline: stage map, board view, transitions and
tenant transition rules.
"""
