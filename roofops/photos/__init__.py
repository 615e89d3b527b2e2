"""
roofops.photos — Photo/document storage and the markup canvas.
"""
