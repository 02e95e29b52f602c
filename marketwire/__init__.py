"""
marketwire
Indonesian market news pipeline: scoring, dedup, selection and Telegram broadcast
"""

__version__ = "0.1.0"
