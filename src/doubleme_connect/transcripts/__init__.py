"""Transcript post-processing."""
from .action_items import parse_action_items, parse_action_items_from_summary

__all__ = ["parse_action_items", "parse_action_items_from_summary"]
