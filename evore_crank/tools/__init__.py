"""Operator commands: list deployers, lookup table create/extend/show, connectivity test."""
