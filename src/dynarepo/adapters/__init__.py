"""
Web framework adapters. Import the adapter module for the framework in use,
e.g. ``dynarepo.adapters.fastapi``.
"""
