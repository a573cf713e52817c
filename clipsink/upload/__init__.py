"""Screenshot upload pipeline for Clipsink.

An upload arrives as a multipart field named ``img``, streamed straight
out of the request body, and is:
- sniffed: leading bytes matched against file signatures
- gated: anything that is not an image is rejected
- placed: a collision-free path under ``target_dir`` is chosen, if set
- written: streamed to that path (or a temporary file) under a size cap
- clipped: decoded and copied to the system clipboard
"""
