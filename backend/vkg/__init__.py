"""
VKG Query Pipeline - natural-language questions over federated relational sources
"""

__version__ = "0.1.0"
