"""
roofops.crew — Crew portal: time clock, work orders and GPS sync.
"""
