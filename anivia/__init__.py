"""
Notion / Obsidian → Postgres Sync

Pulls Notion pages and local Markdown notes, rehosts their images on
object storage and upserts the normalized posts into a Postgres table.
"""

__version__ = "1.0.0"
