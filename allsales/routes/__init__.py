"""
Routes package - Flask blueprints
"""
