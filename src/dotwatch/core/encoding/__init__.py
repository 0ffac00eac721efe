"""Exposition encoders."""
