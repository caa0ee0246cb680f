"""macOS bundle module.

This module handles:
- Merging per-architecture binaries into a universal binary
- Generating the application icon set
- Assembling the .app bundle and the compressed disk image
"""
