"""
backend.domain: Canonical data models and enumerations.

This package defines the source-of-truth types shared across every layer
of the proposal platform. Nothing in here should import from other backend
sub-packages (only the standard library).
"""
