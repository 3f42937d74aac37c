"""Read-only access to BFC container files: options, index, inodes and content reads."""

__version__ = "0.1.0"