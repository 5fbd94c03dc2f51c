"""Domain services used by the HTTP routes.

Each module works on a SQLAlchemy session and returns JSON-ready dicts;
storage and ML collaborators are passed in explicitly.
"""
