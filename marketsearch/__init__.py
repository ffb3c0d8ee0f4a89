"""Hybrid lexical, fuzzy and phonetic product search."""
