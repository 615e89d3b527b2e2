"""
roofops.reports — KPI dashboard and crew hours reporting (pandas).
"""
