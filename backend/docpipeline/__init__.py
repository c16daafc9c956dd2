"""
docpipeline — document validation, text extraction and semantic chunking.
"""

__version__ = "1.0.0"
