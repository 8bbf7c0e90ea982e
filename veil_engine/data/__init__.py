"""Embedded data tables: deny-lists, context words, Swiss postal codes."""

from .deny_list import DenyList
from .context_words import ContextWord, get_context_words
from .swiss_postal import SwissPostalDatabase, get_postal_database

__all__ = [
    "DenyList",
    "ContextWord",
    "get_context_words",
    "SwissPostalDatabase",
    "get_postal_database",
]
