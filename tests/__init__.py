"""Tests for the classroom world engine."""
