"""Tag reading, change detection, and writing.

Submodules:
    codecs -- Atom (MP4) and frame (ID3, Vorbis) codecs, dispatch by extension
    diff   -- Per-file change-sets against the canonical record
    writer -- Backup, temp-copy write, and swap for one file
"""
