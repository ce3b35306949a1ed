"""Turing: a terminal assistant that lets an LLM run commands and edit files."""
