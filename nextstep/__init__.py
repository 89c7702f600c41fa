"""nextstep: decides the single next development action for a repository."""

__version__ = "0.1.0"
