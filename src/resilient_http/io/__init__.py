"""I/O: codec, response cache, streaming decoder."""
