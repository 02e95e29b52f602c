"""
Selection Module
Provides impact scoring, deduplication, and per-cycle priority selection
"""

from .scorer import score_article, score_articles, classify_impact
from .dedup import generate_fingerprint, filter_duplicates, mark_as_dispatched
from .priority import select_final_articles
from .models import DedupResult, Rejection, SelectionResult

__all__ = [
    'score_article',
    'score_articles',
    'classify_impact',
    'generate_fingerprint',
    'filter_duplicates',
    'mark_as_dispatched',
    'select_final_articles',
    'DedupResult',
    'Rejection',
    'SelectionResult'
]
