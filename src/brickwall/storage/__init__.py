"""
Persistence for wall state.

- brick_store: wall_bricks / edit_bricks access (async facade over SQLite)
- catalog: static coordinate -> asset id catalog loaded at startup
- images: uploaded image payload validation and file storage
"""
