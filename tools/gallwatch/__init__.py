"""
Gallery watcher – keep a deduplicated local copy of a gallery's images.

Supports:
  • Polling the first list page of a DCInside gallery on a fixed interval
  • Downloading every image of new articles concurrently
  • Storing each distinct image once, named ``<sha256>.<ext>``
  • Rebuilding the known-image set from disk at startup (reconciliation)
"""
