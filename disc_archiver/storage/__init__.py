"""External tools and file handling behind the drive engines."""
